from pydantic import BaseModel, Field, field_validator
from typing import Dict, Any, List, Optional, Literal
from datetime import datetime
from decimal import Decimal
import math

CellValue = Any  # number | str | bool | None

FindingType = Literal["HIGHLIGHT", "WARNING", "TREND", "ANOMALY"]
ChartKind = Literal["bar", "line", "donut", "stacked-bar"]


class ResultSet(BaseModel):
    """查询执行结果 (由外部执行器产生，分析与图表只读使用)"""

    query: str = ""
    columns: List[str] = Field(default_factory=list)
    rows: List[List[CellValue]] = Field(default_factory=list)
    success: bool = True
    error_message: Optional[str] = None
    execution_time_ms: int = 0

    @field_validator("rows")
    @classmethod
    def _drop_non_finite(cls, rows: List[List[CellValue]]) -> List[List[CellValue]]:
        """Infinity / NaN 单元格记为None (JSON无法表示)"""
        def clean(value: CellValue) -> CellValue:
            if isinstance(value, (float, Decimal)) and not math.isfinite(float(value)):
                return None
            return value
        return [[clean(v) for v in row] for row in rows]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def records(self) -> List[Dict[str, CellValue]]:
        """按列名返回行字典列表"""
        return [dict(zip(self.columns, row)) for row in self.rows]

    @classmethod
    def failure(cls, query: str, message: str, execution_time_ms: int = 0) -> "ResultSet":
        return cls(
            query=query,
            success=False,
            error_message=message,
            execution_time_ms=execution_time_ms
        )


class Finding(BaseModel):
    """单条发现"""

    type: FindingType
    message: str
    value: Optional[str] = None
    significance: float = Field(default=0.5, ge=0.0, le=1.0)


class Highlights(BaseModel):
    """数据亮点"""

    top_value: Optional[str] = None
    bottom_value: Optional[str] = None
    total: Optional[float] = None
    average: Optional[float] = None
    trend: Optional[str] = None


class Prediction(BaseModel):
    """单个时间序列的预测统计"""

    column: str
    points: int
    slope: float
    mean: float
    std_dev: float
    relative_trend: float
    trend: Literal["increasing", "decreasing", "stable"]
    risk_level: Literal["LOW", "MEDIUM", "HIGH"]
    forecast: float


class Insight(BaseModel):
    """洞察结果"""

    summary: str
    findings: List[Finding] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    highlights: Optional[Highlights] = None
    predictions: List[Prediction] = Field(default_factory=list)
    explanation: Optional[str] = None


class Dataset(BaseModel):
    """图表数据集"""

    label: str
    data: List[float]
    background_color: str
    border_color: str
    border_width: int = 2


class ChartSpec(BaseModel):
    """图表配置"""

    kind: ChartKind
    title: str
    labels: List[str]
    datasets: List[Dataset]
    options: Dict[str, Any] = Field(default_factory=dict)


class TurnResponse(BaseModel):
    """一次对话轮次的完整回复"""

    session_id: str
    message: str
    query: str
    category: str
    resolved_utterance: str
    is_follow_up: bool = False
    insight: Insight
    chart: Optional[ChartSpec] = None
    result: ResultSet
    follow_ups: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)
