"""
Prometheus metrics 定义。

业务模块通过 `from litgraph.observability import metrics` 引用；
指标对象注册在 prometheus_client 默认 registry 上，由进程入口决定是否暴露。
"""

from prometheus_client import Counter, Gauge, Histogram


class _Metrics:
    """集中管理所有 Prometheus 指标"""

    def __init__(self):
        # ── Job 状态机 ──
        self.job_transitions_total = Counter(
            "litgraph_job_transitions_total",
            "Job 状态迁移次数",
            ["status"],
        )
        self.jobs_running = Gauge(
            "litgraph_jobs_running",
            "当前运行中的后台管线任务数",
        )
        self.stage_duration_seconds = Histogram(
            "litgraph_stage_duration_seconds",
            "管线阶段耗时 (秒)",
            ["stage"],  # search / extraction / build / analysis
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
        )

        # ── 文章抽取 ──
        self.articles_extracted_total = Counter(
            "litgraph_articles_extracted_total",
            "文章抽取结果计数",
            ["outcome"],  # processed / failed / skipped / discarded
        )

        # ── 外部调用 ──
        self.upstream_retries_total = Counter(
            "litgraph_upstream_retries_total",
            "外部调用重试次数",
            ["operation"],
        )
        self.normalization_total = Counter(
            "litgraph_normalization_total",
            "术语规范化请求",
            ["source"],  # cache / provider / fallback
        )

        # ── 图 ──
        self.graph_snapshots_total = Counter(
            "litgraph_graph_snapshots_total",
            "已持久化的图快照数",
        )
        self.analysis_cache_total = Counter(
            "litgraph_analysis_cache_total",
            "分析结果缓存访问",
            ["result"],  # hit / miss
        )


metrics = _Metrics()
