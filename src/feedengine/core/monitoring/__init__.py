"""
Core Monitoring Module

Provides metrics collection for cache, evaluation and store operations.
"""

from .metrics import MetricsCollector, MetricType, get_metrics_collector, time_operation

__all__ = [
    'MetricsCollector',
    'MetricType',
    'get_metrics_collector',
    'time_operation',
]
