# metrics_logger.py
# Description: Structured metrics emitted through loguru on a dedicated METRIC level.
#
# Imports
import asyncio
import functools
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Union
#
# Third-party Imports
from loguru import logger
#
# Local Imports
#
############################################################################################################
#
# Functions:

LabelValue = Union[str, int, float, bool]
LabelDict = Dict[str, LabelValue]

# Sinks can filter on this level to separate metrics from application logs.
try:
    logger.level("METRIC")
except ValueError:
    logger.level("METRIC", no=25, color="<blue>")


def _log_metric(
        metric_name: str,
        metric_type: str,
        value: Any,
        labels: Optional[LabelDict] = None,
):
    """Logs one metric with its fields bound at the top level of the record's extras."""
    bound_logger = logger.bind(
        event=metric_name,
        type=metric_type,
        value=value,
        labels=labels or {},
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
    bound_logger.log("METRIC", f"{metric_type.capitalize()} '{metric_name}': {value}")


def timeit(
        metric_name: Optional[str] = None,
        labels: Optional[LabelDict] = None,
        log_summary: bool = False,
        log_call_count: bool = False,
):
    """
    Times a function or coroutine function, logging a duration histogram labelled with its status.

    Args:
        metric_name (str, optional): Custom name for the metric. Defaults to "<function>_duration_seconds".
        labels (dict, optional): Extra labels to add to the metric.
        log_summary (bool): If True, logs a human-readable summary at INFO level.
        log_call_count (bool): If True, also logs a counter metric for each call.
    """

    def decorator(func: Callable) -> Callable:
        m_name = metric_name or f"{func.__name__}_duration_seconds"
        all_labels = {"function": func.__name__}
        if labels:
            all_labels.update(labels)

        def _finish(start_time: float, status: str):
            elapsed_time = time.perf_counter() - start_time
            final_labels = {**all_labels, "status": status}
            _log_metric(m_name, "histogram", elapsed_time, final_labels)
            if log_call_count:
                _log_metric(f"{func.__name__}_calls_total", "counter", 1, final_labels)
            if log_summary:
                logger.info(f"Function '{func.__name__}' finished in {elapsed_time:.4f}s with status '{status}'.")

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = time.perf_counter()
                status = "success"
                try:
                    return await func(*args, **kwargs)
                except Exception:
                    status = "failure"
                    raise
                finally:
                    _finish(start_time, status)
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            status = "success"
            try:
                return func(*args, **kwargs)
            except Exception:
                status = "failure"
                raise
            finally:
                _finish(start_time, status)

        return wrapper

    return decorator


class MetricsLogger:
    """Groups metrics under a set of base labels (e.g. a component name)."""

    def __init__(self, base_labels: Optional[LabelDict] = None):
        self._base_labels = base_labels or {}

    def _get_labels(self, labels: Optional[LabelDict]) -> LabelDict:
        final_labels = self._base_labels.copy()
        if labels:
            final_labels.update(labels)
        return final_labels

    def log_counter(self, name: str, value: int = 1, labels: Optional[LabelDict] = None):
        _log_metric(name, "counter", value, self._get_labels(labels))

    def log_gauge(self, name: str, value: float, labels: Optional[LabelDict] = None):
        _log_metric(name, "gauge", value, self._get_labels(labels))

    def log_histogram(self, name: str, value: float, labels: Optional[LabelDict] = None):
        _log_metric(name, "histogram", value, self._get_labels(labels))


default_metrics = MetricsLogger(base_labels={"component": "pos_sync"})
log_counter = default_metrics.log_counter
log_gauge = default_metrics.log_gauge
log_histogram = default_metrics.log_histogram

#
# End of metrics_logger.py
############################################################################################################
