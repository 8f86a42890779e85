"""
Unified Logger System.

JSON-only structured logging for the query pipeline. Every record carries
the component type and name as custom dimensions; loggers created with a
LogContext add its correlation fields (connection, request, layer).

Exports:
    ComponentType: Enum for component types
    LogLevel: Enum for log levels
    LogContext: Correlation fields for one request
    JSONFormatter: Structured formatter
    LoggerFactory: Factory for creating loggers
    log_exceptions: Exception logging decorator

Dependencies:
    Standard library only (logging, enum, dataclasses, json)
"""

from enum import Enum
from typing import Optional, Dict, Any, Union
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
import logging
import sys
import os
import json
import traceback
from functools import wraps


class ComponentType(Enum):
    """Pipeline layers; each gets its own logger namespace."""
    SERVICE = "service"        # Orchestration (publisher, inference, facade)
    REPOSITORY = "repository"  # Data access (saved queries, catalog)
    FACTORY = "factory"        # Connection providers
    ADAPTER = "adapter"        # GeoServer, NL provider, executor
    VALIDATOR = "validator"
    COMPILER = "compiler"


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_python_level(self) -> int:
        return getattr(logging, self.value)

    @classmethod
    def from_environment(cls) -> 'LogLevel':
        """DEBUG_LOGGING=true wins over LOG_LEVEL; unknown names fall back to INFO."""
        if os.getenv('DEBUG_LOGGING', '').lower() == 'true':
            return cls.DEBUG
        return cls.__members__.get(os.getenv('LOG_LEVEL', 'INFO').upper(), cls.INFO)


@dataclass(frozen=True)
class LogContext:
    """Correlation fields attached to every record of a contextual logger."""
    connection_id: Optional[str] = None
    request_id: Optional[str] = None
    layer_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line so log shippers can parse it directly.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name,
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if hasattr(record, 'custom_dimensions'):
            log_obj['customDimensions'] = record.custom_dimensions

        if record.exc_info:
            log_obj['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        return json.dumps(log_obj, default=str)


class _DimensionsAdapter(logging.LoggerAdapter):
    """Merges fixed dimensions under any per-call custom_dimensions."""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        dims = dict(self.extra)
        dims.update(extra.get('custom_dimensions', {}))
        extra['custom_dimensions'] = dims
        kwargs['extra'] = extra
        return msg, kwargs


ContextLogger = Union[logging.Logger, logging.LoggerAdapter]


class LoggerFactory:
    """
    Factory for component-specific loggers.

    Example:
        logger = LoggerFactory.create_logger(ComponentType.SERVICE, "ViewPublisher")
        logger.info("Publishing layer")

    Handlers are attached once per logger name; the returned adapter carries
    the dimensions, so two loggers with the same name but different contexts
    never share correlation fields.
    """

    @classmethod
    def _base_logger(cls, component_type: ComponentType, name: str,
                     level: Optional[LogLevel] = None) -> logging.Logger:
        logger = logging.getLogger(f"{component_type.value}.{name}")
        log_level = (level or LogLevel.from_environment()).to_python_level()
        logger.setLevel(log_level)

        if not any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers):
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter())
            logger.addHandler(handler)
        for handler in logger.handlers:
            handler.setLevel(log_level)

        logger.propagate = True
        return logger

    @classmethod
    def create_logger(
        cls,
        component_type: ComponentType,
        name: str,
        context: Optional[LogContext] = None,
        level: Optional[LogLevel] = None
    ) -> ContextLogger:
        """
        Create a logger for a specific component.

        Args:
            component_type: Type of component
            name: Component name (e.g., "SQLValidator")
            context: Optional correlation fields
            level: Overrides the level read from the environment

        Returns:
            Logger adapter emitting JSON with custom dimensions
        """
        logger = cls._base_logger(component_type, name, level)
        dimensions = context.to_dict() if context else {}
        dimensions['component_type'] = component_type.value
        dimensions['component_name'] = name
        return _DimensionsAdapter(logger, dimensions)

    @classmethod
    def create_with_context(
        cls,
        component_type: ComponentType,
        name: str,
        connection_id: Optional[str] = None,
        layer_name: Optional[str] = None,
        request_id: Optional[str] = None
    ) -> ContextLogger:
        """Create a logger correlated to one connection, layer or request."""
        context = LogContext(
            connection_id=connection_id,
            request_id=request_id,
            layer_name=layer_name,
        ) if any([connection_id, layer_name, request_id]) else None
        return cls.create_logger(component_type, name, context=context)


def log_exceptions(component_type: Optional[ComponentType] = None,
                   component_name: Optional[str] = None,
                   logger: Optional[ContextLogger] = None):
    """
    Decorator that logs an escaping exception with its error code, then re-raises.

    Usage:
        @log_exceptions(ComponentType.SERVICE, "QueryPipelineService")
        @log_exceptions(logger=my_logger)
        @log_exceptions()  # logger named after the function's module
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if logger:
                    log = logger
                elif component_type and component_name:
                    log = LoggerFactory.create_logger(component_type, component_name)
                else:
                    log = LoggerFactory.create_logger(ComponentType.SERVICE, func.__module__ or "unknown")

                log.error(
                    f"Exception in {func.__name__}: {type(e).__name__}",
                    exc_info=True,
                    extra={
                        'custom_dimensions': {
                            'function_name': func.__name__,
                            'exception_type': type(e).__name__,
                            'exception_message': str(e),
                            'error_code': getattr(getattr(e, 'error_code', None), 'value', None),
                            'traceback': traceback.format_exc()
                        }
                    }
                )
                raise
        return wrapper
    return decorator
