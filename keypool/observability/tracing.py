"""
Keypool Distributed Tracing.

Thin helpers over the OpenTelemetry tracing API. Without a configured
SDK provider the API hands out non-recording spans, so instrumented code
runs unchanged in tests and scripts.
"""

import functools
from typing import Any, Callable, ContextManager, Dict, Optional, TypeVar, Union

from opentelemetry import trace

# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., Any])

TRACER_NAME = "keypool"
MIGRATIONS_TRACER = "keypool.storage.migrations"


def get_tracer(name: str = TRACER_NAME) -> trace.Tracer:
    """
    Get a tracer for the given name.

    Args:
        name: Tracer name (typically module name)

    Returns:
        OpenTelemetry tracer
    """
    return trace.get_tracer(name)


def migration_span(operation: str, **attributes: Any) -> ContextManager[trace.Span]:
    """
    Start a span for one step of a migration pass.

    The span is named keypool.migrations.<operation>; keyword attributes
    are recorded under the migration.* namespace and None values dropped.

    Usage:
        with migration_span("apply", version="1.2.0") as span:
            ...
    """
    return get_tracer(MIGRATIONS_TRACER).start_as_current_span(
        f"keypool.migrations.{operation}",
        attributes={
            f"migration.{key}": value
            for key, value in attributes.items()
            if value is not None
        },
    )


def trace_method(
    name: Optional[str] = None,
    record_args: bool = True,
) -> Callable[[F], F]:
    """
    Decorator to trace a synchronous function or method.

    Args:
        name: Span name (defaults to function qualname)
        record_args: Whether to record function arguments as attributes

    Usage:
        @trace_method(name="keypool.database.initialize")
        def initialize_database(settings):
            ...
    """

    def decorator(func: F) -> F:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            tracer = get_tracer(func.__module__)

            attributes: Dict[str, Any] = {
                "code.function": func.__name__,
                "code.namespace": func.__module__,
            }

            if record_args:
                # Skip 'self'/'cls' for methods
                arg_names = func.__code__.co_varnames[: func.__code__.co_argcount]
                start_idx = 1 if arg_names and arg_names[0] in ("self", "cls") else 0
                for i, arg in enumerate(args[start_idx:], start=start_idx):
                    if i < len(arg_names):
                        arg_val = _safe_attribute_value(arg)
                        if arg_val is not None:
                            attributes[f"arg.{arg_names[i]}"] = arg_val
                for key, value in kwargs.items():
                    arg_val = _safe_attribute_value(value)
                    if arg_val is not None:
                        attributes[f"arg.{key}"] = arg_val

            # Exceptions are recorded on the span by start_as_current_span
            with tracer.start_as_current_span(span_name, attributes=attributes):
                return func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


def _safe_attribute_value(value: Any) -> Optional[Union[str, int, float, bool]]:
    """
    Convert a value to a safe attribute value for tracing.

    OpenTelemetry only supports certain types for attributes.
    """
    if value is None:
        return None
    if isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (list, tuple)):
        if len(value) <= 10:
            return str(value)
        return f"[{len(value)} items]"
    if isinstance(value, dict):
        if len(value) <= 5:
            return str(value)
        return f"{{{len(value)} items}}"
    return f"<{type(value).__name__}>"
