import logging
import traceback
from typing import Dict, Any, Optional, List

from .base_agent import BaseAgent
from ..analytics.predictive import RiskThresholds, predictive_augmentation
from ..analytics.strategies import STRATEGIES, Strategy, clamp, generic_insight, no_data_insight
from ..data.processor import DataProcessor
from ..models.analysis import Finding, Insight, ResultSet

logger = logging.getLogger(__name__)

class AnalysisExecutionAgent(BaseAgent):
    """负责对查询结果生成洞察的智能体 - 类别策略 + 预测性分析"""

    required_inputs = ("category", "result")

    def __init__(self, thresholds: Optional[RiskThresholds] = None):
        super().__init__("AnalysisExecution")
        self.thresholds = thresholds or RiskThresholds.from_settings()
        # 类别 -> 洞察策略
        self.analysis_processors: Dict[str, Strategy] = dict(STRATEGIES)

    def register_processor(self, category: str, processor_func: Strategy):
        """注册新的洞察策略"""
        self.analysis_processors[category] = processor_func
        logger.info(f"Registered new analysis processor: {category}")

    def get_available_analyses(self) -> List[str]:
        return list(self.analysis_processors.keys())

    async def process(self, input_data: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Insight:
        if not await self.validate_input(input_data):
            return no_data_insight()
        return self.analyze(input_data["category"], input_data["result"])

    def analyze(self, category: str, result_set: ResultSet) -> Insight:
        """
        生成洞察

        Args:
            category: 查询类别
            result_set: 查询结果集

        Returns:
            洞察；发现按显著性从高到低排序
        """
        if not result_set.success or result_set.is_empty:
            logger.info(f"No data to analyze for category '{category}'")
            return no_data_insight()

        df = DataProcessor.to_dataframe(result_set)
        logger.info(f"Analyzing {len(df)} rows for category '{category}'")

        strategy = self.analysis_processors.get(category, generic_insight)
        try:
            insight = strategy(df)
        except Exception as e:
            logger.error(f"Insight strategy for '{category}' failed, using generic insight: {e}")
            logger.error(traceback.format_exc())
            insight = generic_insight(df)

        try:
            predictions, recommendations = predictive_augmentation(df, self.thresholds)
        except Exception as e:
            logger.error(f"Predictive augmentation failed: {e}")
            logger.error(traceback.format_exc())
            predictions, recommendations = [], []

        findings = list(insight.findings)
        for prediction in predictions:
            if prediction.trend == "stable":
                continue
            findings.append(Finding(
                type="TREND",
                message=(f"{prediction.column.replace('_', ' ').capitalize()} is {prediction.trend} "
                         f"({prediction.relative_trend * 100:+.1f}% per period, risk {prediction.risk_level})"),
                value=f"{prediction.forecast:.1f}",
                significance=clamp(abs(prediction.relative_trend) * 5)
            ))

        highlights = insight.highlights
        if predictions and highlights is not None and highlights.trend is None:
            highlights = highlights.model_copy(update={"trend": predictions[0].trend})

        # sorted() 是稳定排序，显著性相同的发现保持原顺序
        return insight.model_copy(update={
            "findings": sorted(findings, key=lambda f: -f.significance),
            "recommendations": list(insight.recommendations) + recommendations,
            "predictions": predictions,
            "highlights": highlights,
        })
