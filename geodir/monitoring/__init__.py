"""Monitoring: Prometheus metrics."""

from geodir.monitoring.metrics import Metrics, get_metrics

__all__ = ["Metrics", "get_metrics"]
