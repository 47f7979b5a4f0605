"""CloudWatch metrics."""

from behavioral_engine.monitoring.metrics import MetricPoint, MetricsCollector, MetricType

__all__ = ["MetricPoint", "MetricsCollector", "MetricType"]
