"""
Pure SQL layer: identifier safety, compiler and safety validator.

No I/O happens in this package.
"""

from .compiler import SQLCompiler, compile_query
from .validator import SQLValidator

__all__ = ['SQLCompiler', 'compile_query', 'SQLValidator']
