"""Prometheus metrics for order, ledger and reporting operations.

Each mutation path of the order ledger gets its own Histogram; the
``measure_duration`` decorator records how long a call took.
"""

import functools

from prometheus_client import Counter, Histogram

order_create_duration_seconds = Histogram(
    "order_create_duration_seconds", "Duration of order creation"
)
order_update_duration_seconds = Histogram(
    "order_update_duration_seconds", "Duration of order update"
)
order_delete_duration_seconds = Histogram(
    "order_delete_duration_seconds", "Duration of order deletion"
)
ledger_recalc_duration_seconds = Histogram(
    "ledger_recalc_duration_seconds", "Duration of a supplier balance recalculation"
)
adjustment_duration_seconds = Histogram(
    "adjustment_duration_seconds", "Duration of a supplier balance adjustment"
)
normalize_duration_seconds = Histogram(
    "normalize_duration_seconds", "Duration of stored order re-normalization"
)
report_duration_seconds = Histogram(
    "report_duration_seconds", "Duration of reporting queries"
)

validation_failures_total = Counter(
    "order_validation_failures_total", "Orders rejected by validation"
)


def measure_duration(metric):
    """Decorator to record a function's execution time in a Histogram.

    Args:
        metric (Histogram): Prometheus Histogram to record execution time.

    Returns:
        Callable: A decorator that wraps a function and observes its duration.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with metric.time():
                return func(*args, **kwargs)

        return wrapper

    return decorator
