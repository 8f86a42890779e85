"""
Core Query Pipeline Components.

Pure, I/O-free building blocks of the pipeline.

Structure:
    models/: Pure data structures (no business logic)
    sql/: Identifier safety, SQL compiler, safety validator
    errors.py: Error codes and retry classification
"""
