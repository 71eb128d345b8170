from pydantic import BaseModel, ConfigDict
from typing import Optional, Tuple
from enum import Enum

from .analysis import ChartKind


class QueryCategory(str, Enum):
    """查询类别标签"""

    ACTIVE_TENANTS = "active_tenants"
    ALL_TENANTS = "all_tenants"
    COLLEAGUES_BY_LOCATION = "colleagues_by_location"
    EXCEPTIONS_BY_TYPE = "exceptions_by_type"
    DAILY_EXCEPTIONS = "daily_exceptions"
    TENANT_OVERVIEW = "tenant_overview"
    SHIFT_PATTERNS = "shift_patterns"
    EXCEPTION_STATUS_DISTRIBUTION = "exception_status_distribution"
    COLLEAGUE_ACTIVITY = "colleague_activity"
    TOP_COLLEAGUES = "top_colleagues"
    FREEFORM = "freeform"
    UNKNOWN = "unknown"


class ChartHint(BaseModel):
    """图表提示：如何不经自动检测把结果集转为图表"""

    model_config = ConfigDict(frozen=True)

    kind: ChartKind
    value_columns: Tuple[str, ...]
    label_column: Optional[str] = None
    group_by: Optional[Tuple[str, str]] = None  # (标签字段, 数据集字段)


class PatternEntry(BaseModel):
    """注册表条目，进程内只读"""

    model_config = ConfigDict(frozen=True)

    phrase: str
    category: str
    template: str
    chart_hint: Optional[ChartHint] = None
