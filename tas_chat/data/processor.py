import re
import pandas as pd
import numpy as np
from decimal import Decimal
from typing import Any, List, Optional

from ..models.analysis import ResultSet

TIME_COLUMN_TOKENS = ("date", "time", "period", "hour", "day", "week", "month")

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}


class DataProcessor:
    """负责结果集的转换与清洗"""

    @staticmethod
    def to_dataframe(result_set: ResultSet) -> pd.DataFrame:
        """
        将结果集转换为DataFrame (保持原始单元格类型)

        Args:
            result_set: 查询结果集

        Returns:
            以列名为表头的DataFrame
        """
        if not result_set.columns:
            return pd.DataFrame()
        return pd.DataFrame(result_set.rows, columns=result_set.columns, dtype=object)

    @staticmethod
    def is_numeric_value(value: Any) -> bool:
        """布尔值不算数值"""
        if isinstance(value, (bool, np.bool_)):
            return False
        return isinstance(value, (int, float, Decimal, np.number))

    @staticmethod
    def to_float(value: Any) -> float:
        """尽力把单元格转换为float，失败时返回0"""
        if value is None:
            return 0.0
        if isinstance(value, (bool, np.bool_)):
            return 1.0 if value else 0.0
        try:
            result = float(value)
        except (TypeError, ValueError):
            return 0.0
        if np.isnan(result) or np.isinf(result):
            return 0.0
        return result

    @staticmethod
    def coerce_numeric(series: pd.Series) -> pd.Series:
        """数值化一列，无法解析的单元格和 ±inf 记为0 (与 to_float 一致)"""
        as_numbers = series.map(lambda v: float(v) if isinstance(v, (bool, np.bool_)) else v)
        numbers = pd.to_numeric(as_numbers, errors="coerce").astype(float)
        return numbers.replace([np.inf, -np.inf], np.nan).fillna(0.0)

    @staticmethod
    def numeric_columns(df: pd.DataFrame) -> List[str]:
        """所有非空单元格都是数值的列"""
        columns = []
        for col in df.columns:
            values = [v for v in df[col].tolist() if v is not None]
            if values and all(DataProcessor.is_numeric_value(v) for v in values):
                columns.append(col)
        return columns

    @staticmethod
    def label_columns(df: pd.DataFrame) -> List[str]:
        numeric = set(DataProcessor.numeric_columns(df))
        return [col for col in df.columns if col not in numeric]

    @staticmethod
    def find_time_columns(columns: List[str]) -> List[str]:
        """按列名中的单词识别日期/时间列 (exception_date, shift_hour ...)"""
        return [col for col in columns
                if any(token in TIME_COLUMN_TOKENS for token in re.split(r"[^a-z0-9]+", col.lower()))]

    @staticmethod
    def find_column(columns: List[str], *candidates: str) -> Optional[str]:
        """按候选名查找列：先精确匹配，再按包含关系匹配"""
        lowered = {col.lower(): col for col in columns}
        for candidate in candidates:
            if candidate.lower() in lowered:
                return lowered[candidate.lower()]
        for candidate in candidates:
            for col in columns:
                if candidate.lower() in col.lower():
                    return col
        return None

    @staticmethod
    def is_truthy(value: Any) -> bool:
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        if DataProcessor.is_numeric_value(value):
            return value != 0
        return False

    @staticmethod
    def as_label(value: Any) -> str:
        """单元格转为展示用标签 (整数值的浮点数去掉小数部分)"""
        if value is None:
            return "N/A"
        if isinstance(value, (float, Decimal)) and not isinstance(value, bool) and float(value).is_integer():
            return str(int(value))
        return str(value)
