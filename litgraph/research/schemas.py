"""
Research job 请求模型 (Pydantic)

调用方（CLI、上层 API）传入 dict 或模型实例；validate() 把 pydantic 的
ValidationError 统一转换为 InvalidInputError，不落库任何数据。
"""

from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from litgraph.errors import InvalidInputError

M = TypeVar("M", bound=BaseModel)


class CreateJobRequest(BaseModel):
    """创建研究任务"""

    topic: str = Field(..., min_length=1, max_length=500, description="研究主题，检索查询的原文")
    max_results: int = Field(20, ge=1, le=200, description="最多保留的候选文献数")
    year_from: Optional[int] = Field(None, ge=1800, le=2100, description="发表年份下限（含）")
    year_to: Optional[int] = Field(None, ge=1800, le=2100, description="发表年份上限（含）")
    sources: List[str] = Field(default_factory=lambda: ["pubmed"], description="检索来源")

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("topic must not be blank")
        return v

    @model_validator(mode="after")
    def _year_range(self) -> "CreateJobRequest":
        if self.year_from is not None and self.year_to is not None and self.year_from > self.year_to:
            raise ValueError("year_from must not be after year_to")
        return self


class ScreeningUpdate(BaseModel):
    """人工筛选结果；两个列表都未出现的文献回到 pending"""

    included_ids: List[str] = Field(default_factory=list)
    excluded_ids: List[str] = Field(default_factory=list)
    exclusion_reasons: Dict[str, str] = Field(default_factory=dict, description="article_id -> 排除理由")

    @model_validator(mode="after")
    def _disjoint(self) -> "ScreeningUpdate":
        overlap = sorted(set(self.included_ids) & set(self.excluded_ids))
        if overlap:
            raise ValueError(f"articles both included and excluded: {', '.join(overlap)}")
        return self


class AnalyzeRequest(BaseModel):
    """分析 / 建图参数"""

    directed: bool = False
    node_types: Optional[List[str]] = Field(None, description="只保留这些实体类型，None 表示全部")
    min_entity_confidence: float = Field(0.0, ge=0.0, le=1.0)
    min_relation_confidence: float = Field(0.0, ge=0.0, le=1.0)
    graph_name: Optional[str] = Field(None, max_length=200)


def validate(model: Type[M], data: Union[M, Dict[str, Any], None]) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except ValidationError as exc:
        errors = [
            {"loc": ".".join(str(p) for p in e.get("loc", ())), "msg": e.get("msg", "")}
            for e in exc.errors()
        ]
        first = errors[0] if errors else {"loc": "", "msg": str(exc)}
        message = f"{first['loc']}: {first['msg']}" if first["loc"] else first["msg"]
        raise InvalidInputError(message, {"errors": errors}) from exc
