"""
统一配置模块
- 配置文件: config/litgraph_config.json（管线、缓存、分析等可调参数）
- 本地覆盖: config/litgraph_config.local.json（本地私密配置，不入库）
- 环境变量优先覆盖敏感项（API Key、数据库 URL 等）

Settings 由进程入口显式构造（load_settings），再注入各服务。
"""

import os
import json
from pathlib import Path
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent / "litgraph_config.json"


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_raw_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """读取 JSON 配置并合并同目录下的 *.local.json 覆盖."""
    path = Path(path) if path else _CONFIG_PATH
    raw = _load_json(path)
    local_path = path.with_name(f"{path.stem}.local{path.suffix}")
    if local_path.exists():
        raw = _deep_merge(raw, _load_json(local_path))
    return raw


@dataclass
class DatabaseSettings:
    url: str = "sqlite:///data/litgraph.db"
    echo: bool = False


@dataclass
class PipelineSettings:
    """Job 管线：并发、日志上限、预览截断"""
    extraction_concurrency: int = 3
    max_logs_per_job: int = 1000
    log_channel_size: int = 256
    preview_entity_limit: int = 100
    preview_relation_limit: int = 50


@dataclass
class SearchSettings:
    """文献检索：默认条数、重试退避、兜底放宽检索"""
    default_max_results: int = 20
    max_retries: int = 3
    retry_backoff: float = 2.0
    max_backoff_seconds: float = 10.0
    broaden_on_empty: bool = True
    fetch_missing_abstracts: bool = True
    timeout_seconds: int = 20
    ncbi_api_key: str = ""


@dataclass
class CacheSettings:
    maxsize: int = 10000
    default_ttl_seconds: int = 3600


@dataclass
class NormalizationSettings:
    """术语规范化：缓存 24h，低于 min_confidence 时回退到大小写无关匹配"""
    ttl_seconds: int = 86400
    min_confidence: float = 0.5
    timeout_seconds: int = 15


@dataclass
class ExtractionSettings:
    """实体/关系抽取：rule（本体正则）或 llm（OpenAI 兼容接口）"""
    strategy: str = "rule"
    max_text_chars: int = 6000
    ontology_path: str = str(Path(__file__).parent / "ontology.json")
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_api_key: str = ""
    llm_timeout_seconds: int = 60


@dataclass
class AnalysisSettings:
    """图分析：特征向量迭代、社区划分种子、gap 启发式阈值"""
    cache_ttl_seconds: int = 900
    eigenvector_max_iter: int = 100
    eigenvector_tol: float = 1e-6
    community_seed: int = 42
    community_resolution: float = 1.0
    gap_top_nodes: int = 10
    gap_jaccard_threshold: float = 0.3
    gap_weak_link_ratio: float = 0.5
    gap_bridge_ratio: float = 0.1
    gap_sparse_density: float = 0.3
    max_gaps: int = 20


@dataclass
class PathSettings:
    base: Path = field(default_factory=lambda: Path(__file__).parent.parent)

    @property
    def data(self) -> Path:
        return self.base / "data"

    @property
    def logs(self) -> Path:
        return self.base / "logs"

    def ensure_dirs(self):
        for p in [self.data, self.logs]:
            p.mkdir(parents=True, exist_ok=True)


def _section(raw: Dict[str, Any], cls, **env_overrides: Any):
    """按 dataclass 字段从配置段取值，未知键忽略；环境变量覆盖优先."""
    data = raw or {}
    known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
    for key, value in env_overrides.items():
        if value not in (None, ""):
            known[key] = value
    return cls(**known)


class Settings:
    def __init__(self, raw: Optional[Dict[str, Any]] = None):
        raw = raw if raw is not None else load_raw_config()
        self.env = os.getenv("LITGRAPH_ENV", "dev")
        self.raw = raw
        self.database = _section(
            raw.get("database"), DatabaseSettings,
            url=os.getenv("LITGRAPH_DATABASE_URL"),
        )
        self.pipeline = _section(raw.get("pipeline"), PipelineSettings)
        self.search = _section(
            raw.get("search"), SearchSettings,
            ncbi_api_key=os.getenv("NCBI_API_KEY"),
        )
        self.cache = _section(raw.get("cache"), CacheSettings)
        self.normalization = _section(raw.get("normalization"), NormalizationSettings)
        self.extraction = _section(
            raw.get("extraction"), ExtractionSettings,
            strategy=os.getenv("LITGRAPH_EXTRACTION_STRATEGY"),
            llm_api_key=os.getenv("LITGRAPH_LLM_API_KEY") or os.getenv("OPENAI_API_KEY"),
            llm_base_url=os.getenv("LITGRAPH_LLM_BASE_URL"),
        )
        self.analysis = _section(raw.get("analysis"), AnalysisSettings)
        self.logging: Dict[str, Any] = dict(raw.get("logging") or {})
        self.path = PathSettings()

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"

    def print_info(self):
        print(f"""
========================================
  LitGraph 科研知识图谱管线
========================================
  环境: {self.env}
  数据库: {self.database.url}
  抽取策略: {self.extraction.strategy}
  抽取并发: {self.pipeline.extraction_concurrency}
========================================
        """)


def load_settings(path: Optional[Path] = None) -> Settings:
    return Settings(load_raw_config(path))
