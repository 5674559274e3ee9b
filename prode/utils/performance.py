"""
Performance monitoring utilities
Provides a decorator and a context manager for timing engine operations
"""

import functools
import time

from flask import current_app, g, has_app_context, has_request_context

from prode.utils.logging_config import get_logger

logger = get_logger(__name__)


def _slow_threshold(default=1.0):
    if has_app_context():
        return current_app.config.get("SLOW_FUNCTION_THRESHOLD", default)
    return default


def timer(func):
    """
    Decorator to time function execution

    Args:
        func: Function to time

    Returns:
        Wrapped function with timing
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            execution_time = time.perf_counter() - start_time
            logger.error(
                f"Function {func.__name__} failed after {execution_time:.2f}s: {str(e)}"
            )
            raise

        execution_time = time.perf_counter() - start_time
        threshold = _slow_threshold()
        if execution_time > threshold:
            logger.warning(
                f"Slow function {func.__name__} took {execution_time:.2f}s "
                f"(threshold: {threshold}s)"
            )
        else:
            logger.debug(f"Function {func.__name__} executed in {execution_time:.3f}s")

        return result

    return wrapper


class PerformanceMonitor:
    """Context manager for monitoring performance of code blocks"""

    def __init__(self, operation_name, log_threshold=None):
        self.operation_name = operation_name
        self.log_threshold = log_threshold
        self.start_time = None
        self.duration = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time
        threshold = (
            self.log_threshold if self.log_threshold is not None else _slow_threshold()
        )

        if exc_type:
            logger.error(
                f"Operation '{self.operation_name}' failed after {self.duration:.3f}s: {exc_val}"
            )
        elif self.duration > threshold:
            logger.warning(
                f"Operation '{self.operation_name}' took {self.duration:.3f}s "
                f"(threshold: {threshold}s)"
            )
        else:
            logger.debug(
                f"Operation '{self.operation_name}' completed in {self.duration:.3f}s"
            )

        # Request-level aggregation
        if has_request_context():
            metrics = g.setdefault("performance_metrics", [])
            metrics.append(
                {
                    "operation": self.operation_name,
                    "duration": self.duration,
                    "success": exc_type is None,
                }
            )

        return False
