import hashlib
import logging
from typing import Dict, Any, Optional, List, Callable

import pandas as pd

from .base_agent import BaseAgent
from ..data.processor import DataProcessor
from ..data.registry import PatternRegistry
from ..models.analysis import ChartSpec, Dataset, ResultSet
from ..models.patterns import ChartHint

logger = logging.getLogger(__name__)

AUTO_CHART_TITLE = "Query Results"

BASE_OPTIONS = {"responsive": True, "maintainAspectRatio": False}


def label_color(label: str) -> str:
    """由标签的MD5生成稳定的颜色 (#rrggbb，各分量 100-255)"""
    digest = hashlib.md5(label.encode("utf-8")).digest()
    r, g, b = (100 + byte % 156 for byte in digest[:3])
    return f"#{r:02x}{g:02x}{b:02x}"


def format_label(name: str) -> str:
    text = name.replace("_", " ").strip()
    return text[:1].upper() + text[1:] if text else text


def build_dataset(label: str, values: List[float]) -> Dataset:
    color = label_color(label)
    return Dataset(
        label=format_label(label),
        data=[float(v) for v in values],
        background_color=color + "33",  # 半透明填充
        border_color=color,
        border_width=2
    )


class VisualizationAgent(BaseAgent):
    """负责把查询结果投影为图表配置的智能体"""

    required_inputs = ("category", "result")

    def __init__(self, registry: PatternRegistry):
        super().__init__("Visualization")
        self.registry = registry
        # 图表类型 -> 构建函数
        self.visualization_processors: Dict[str, Callable[[pd.DataFrame, ChartHint, str], Optional[ChartSpec]]] = {
            "bar": self._visualize_series,
            "line": self._visualize_series,
            "donut": self._visualize_series,
            "stacked-bar": self._visualize_grouped,
        }

    async def process(self, input_data: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Optional[ChartSpec]:
        if not await self.validate_input(input_data):
            return None
        return self.project(input_data["category"], input_data["result"])

    def project(self, category: str, result_set: ResultSet) -> Optional[ChartSpec]:
        """
        生成图表配置

        Args:
            category: 查询类别 (用于查找注册表中的图表提示)
            result_set: 查询结果集

        Returns:
            图表配置；结果失败、为空或没有数值列时返回None
        """
        if not result_set.success or result_set.is_empty:
            return None

        df = DataProcessor.to_dataframe(result_set)
        hint = self.registry.chart_hint(category)
        if hint is not None and self._hint_applies(df, hint):
            entry = self.registry.get(category)
            title = format_label(entry.phrase) if entry else AUTO_CHART_TITLE
            chart = self.visualization_processors[hint.kind](df, hint, title)
            if chart is not None:
                logger.info(f"Built {chart.kind} chart for '{category}' with {len(chart.labels)} labels")
                return chart
        return self._auto_detect(df)

    @staticmethod
    def _hint_applies(df: pd.DataFrame, hint: ChartHint) -> bool:
        needed = list(hint.value_columns)
        if hint.group_by:
            needed.extend(hint.group_by)
        elif hint.label_column:
            needed.append(hint.label_column)
        missing = [col for col in needed if col not in df.columns]
        if missing:
            logger.warning(f"Chart hint columns missing from result: {missing}, falling back to auto-detect")
        return not missing

    def _visualize_series(self, df: pd.DataFrame, hint: ChartHint, title: str) -> ChartSpec:
        if hint.label_column:
            labels = [DataProcessor.as_label(v) for v in df[hint.label_column].tolist()]
        else:
            labels = [str(i + 1) for i in range(len(df))]
        datasets = [
            build_dataset(column, DataProcessor.coerce_numeric(df[column]).tolist())
            for column in hint.value_columns
        ]
        return ChartSpec(kind=hint.kind, title=title, labels=labels, datasets=datasets, options=dict(BASE_OPTIONS))

    def _visualize_grouped(self, df: pd.DataFrame, hint: ChartHint, title: str) -> ChartSpec:
        """二维透视：标签取第一个分组字段，每个第二字段取值一个数据集，缺失组合填0"""
        label_field, dataset_field = hint.group_by
        frame = pd.DataFrame({
            "label": df[label_field].map(DataProcessor.as_label),
            "series": df[dataset_field].map(DataProcessor.as_label),
            "value": DataProcessor.coerce_numeric(df[hint.value_columns[0]]),
        })
        labels = list(pd.unique(frame["label"]))
        series = list(pd.unique(frame["series"]))
        grid = (
            frame.pivot_table(index="label", columns="series", values="value", aggfunc="sum", fill_value=0)
            .reindex(index=labels, columns=series, fill_value=0)
        )
        datasets = [build_dataset(name, grid[name].tolist()) for name in series]
        options = dict(BASE_OPTIONS)
        options["scales"] = {"x": {"stacked": True}, "y": {"stacked": True}}
        return ChartSpec(kind=hint.kind, title=title, labels=labels, datasets=datasets, options=options)

    def _auto_detect(self, df: pd.DataFrame) -> Optional[ChartSpec]:
        numeric = DataProcessor.numeric_columns(df)
        if not numeric:
            return None

        label_columns = DataProcessor.label_columns(df)
        if label_columns:
            labels = [DataProcessor.as_label(v) for v in df[label_columns[0]].tolist()]
        else:
            labels = [str(i + 1) for i in range(len(df))]

        datasets = [build_dataset(column, DataProcessor.coerce_numeric(df[column]).tolist()) for column in numeric]
        logger.info(f"Auto-detected bar chart with {len(datasets)} datasets")
        return ChartSpec(kind="bar", title=AUTO_CHART_TITLE, labels=labels,
                         datasets=datasets, options=dict(BASE_OPTIONS))
