"""Tracing helpers for business operations and external dependencies.

OpenTelemetry is only imported when APPLICATIONINSIGHTS_CONNECTION_STRING is
set; otherwise every decorator is a passthrough.
"""

import inspect
import os
import time
from collections.abc import Callable
from functools import wraps
from typing import ParamSpec, TypeVar, cast

from core.logger import get_logger

logger = get_logger(__name__)

TELEMETRY_ENABLED = bool(os.getenv("APPLICATIONINSIGHTS_CONNECTION_STRING"))

if TELEMETRY_ENABLED:
    from opentelemetry import trace
    from opentelemetry.trace import Status, StatusCode

    tracer = trace.get_tracer(__name__)
else:
    trace = None
    tracer = None
    Status = None
    StatusCode = None

P = ParamSpec("P")
R = TypeVar("R")


def _traced_span(
    span_name: str,
    attributes: dict[str, str],
    *,
    record_exceptions: bool = False,
):
    """Wrap an async function in an OTel span when telemetry is enabled."""
    prefix = next(iter(attributes)).split(".")[0]  # "dependency" or "operation"

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        if not inspect.iscoroutinefunction(func):
            return func

        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs):
            if not TELEMETRY_ENABLED or not tracer:
                return await func(*args, **kwargs)

            with tracer.start_as_current_span(span_name, attributes=attributes) as span:
                start_time = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                    span.set_attribute(f"{prefix}.success", True)
                    return result
                except Exception as e:
                    span.set_attribute(f"{prefix}.success", False)
                    if record_exceptions:
                        span.record_exception(e)
                    else:
                        span.set_attribute(f"{prefix}.error", str(e))
                    if Status is not None and StatusCode is not None:
                        span.set_status(Status(StatusCode.ERROR, str(e)))
                    raise
                finally:
                    duration_ms = (time.perf_counter() - start_time) * 1000
                    span.set_attribute(f"{prefix}.duration_ms", duration_ms)

        return cast(Callable[P, R], async_wrapper)

    return decorator


def track_dependency(name: str, dependency_type: str = "custom"):
    """Decorator to track external dependency calls (store, LLM)."""
    return _traced_span(
        name,
        {"dependency.type": dependency_type, "dependency.name": name},
        record_exceptions=False,
    )


def track_operation(operation_name: str):
    """Decorator to track streak and recovery business operations."""
    return _traced_span(
        operation_name,
        {"operation.name": operation_name},
        record_exceptions=True,
    )


def add_custom_attribute(key: str, value: str | int | float | bool) -> None:
    """Add a custom attribute to the current span."""
    if not TELEMETRY_ENABLED or trace is None:
        return

    span = trace.get_current_span()
    if span:
        span.set_attribute(key, value)


def log_business_event(
    name: str, value: float, properties: dict[str, str] | None = None
) -> None:
    """Emit a structured log line counting a business event.

    This is a log record, not an OpenTelemetry metric.
    """
    if not TELEMETRY_ENABLED:
        return

    logger.info("business.event", event_name=name, value=value, **(properties or {}))
