"""
Observability：Prometheus 指标。

用法：
    from litgraph.observability import metrics

    metrics.job_transitions_total.labels(status="completed").inc()
"""

from litgraph.observability.metrics import metrics

__all__ = ["metrics"]
