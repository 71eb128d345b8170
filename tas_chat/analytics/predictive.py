"""
预测性分析 (Predictive augmentation)

对带有日期/时间列的结果集，逐个数值列做一元线性回归 (x为行序号)，给出趋势、
风险等级和下一期预测值。预测值只是 mean + slope 的一步线性外推，不是完整的
时间序列模型。
"""
import logging
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from pydantic import BaseModel
from scipy import stats

from ..config import settings
from ..data.processor import DataProcessor
from ..models.analysis import Prediction

logger = logging.getLogger(__name__)


class RiskThresholds(BaseModel):
    """趋势与风险评分阈值"""

    trend_threshold: float = 0.05
    min_series_length: int = 3
    mean_high: float = 10.0
    mean_medium: float = 5.0
    cv_high: float = 0.5
    cv_medium: float = 0.3
    trend_high: float = 0.1
    trend_medium: float = 0.05
    score_high: int = 4
    score_medium: int = 2

    @classmethod
    def from_settings(cls) -> "RiskThresholds":
        return cls(
            trend_threshold=settings.TREND_THRESHOLD,
            min_series_length=settings.MIN_SERIES_LENGTH,
            mean_high=settings.RISK_MEAN_HIGH,
            mean_medium=settings.RISK_MEAN_MEDIUM,
            cv_high=settings.RISK_CV_HIGH,
            cv_medium=settings.RISK_CV_MEDIUM,
            trend_high=settings.RISK_TREND_HIGH,
            trend_medium=settings.RISK_TREND_MEDIUM,
            score_high=settings.RISK_SCORE_HIGH,
            score_medium=settings.RISK_SCORE_MEDIUM
        )


def _points(value: float, high: float, medium: float) -> int:
    if value > high:
        return 2
    if value > medium:
        return 1
    return 0


def classify_trend(relative_trend: float, threshold: float = 0.05) -> str:
    if relative_trend > threshold:
        return "increasing"
    if relative_trend < -threshold:
        return "decreasing"
    return "stable"


def risk_level(mean: float, std_dev: float, relative_trend: float,
               thresholds: RiskThresholds) -> str:
    """均值大小、变异系数、趋势幅度各计0~2分"""
    cv = std_dev / abs(mean) if mean else 0.0
    score = (
        _points(abs(mean), thresholds.mean_high, thresholds.mean_medium)
        + _points(cv, thresholds.cv_high, thresholds.cv_medium)
        + _points(abs(relative_trend), thresholds.trend_high, thresholds.trend_medium)
    )
    if score >= thresholds.score_high:
        return "HIGH"
    if score >= thresholds.score_medium:
        return "MEDIUM"
    return "LOW"


def predict_series(column: str, values: List[float],
                   thresholds: Optional[RiskThresholds] = None) -> Optional[Prediction]:
    """
    对一个有序数值序列做预测

    Args:
        column: 列名
        values: 按时间排好序的数值
        thresholds: 阈值，默认取配置

    Returns:
        预测结果；点数不足或均值为0时返回None
    """
    thresholds = thresholds or RiskThresholds.from_settings()
    series = np.asarray(values, dtype=float)
    if len(series) < max(thresholds.min_series_length, 2):
        return None

    mean = float(np.mean(series))
    if mean == 0:
        return None

    slope = float(stats.linregress(np.arange(len(series)), series).slope)
    std_dev = float(np.std(series))  # 总体标准差
    relative_trend = slope / abs(mean)

    return Prediction(
        column=column,
        points=len(series),
        slope=slope,
        mean=mean,
        std_dev=std_dev,
        relative_trend=relative_trend,
        trend=classify_trend(relative_trend, thresholds.trend_threshold),
        risk_level=risk_level(mean, std_dev, relative_trend, thresholds),
        forecast=mean + slope
    )


def _order_by_time(df: pd.DataFrame, time_column: str) -> pd.DataFrame:
    try:
        return df.sort_values(time_column, kind="stable", na_position="last").reset_index(drop=True)
    except (TypeError, ValueError):
        logger.info(f"Column '{time_column}' does not sort cleanly, keeping result order")
        return df.reset_index(drop=True)


def high_risk_periods(labels: List[str], values: List[float], threshold: float) -> List[str]:
    return [label for label, value in zip(labels, values) if value > threshold]


def predictive_augmentation(df: pd.DataFrame,
                            thresholds: Optional[RiskThresholds] = None) -> Tuple[List[Prediction], List[str]]:
    """
    对含时间列的结果集生成预测和建议

    Returns:
        (predictions, recommendations)
    """
    thresholds = thresholds or RiskThresholds.from_settings()
    if df.empty:
        return [], []

    time_columns = DataProcessor.find_time_columns(list(df.columns))
    if not time_columns:
        return [], []

    time_column = time_columns[0]
    ordered = _order_by_time(df, time_column)
    labels = [DataProcessor.as_label(v) for v in ordered[time_column].tolist()]

    predictions: List[Prediction] = []
    recommendations: List[str] = []
    for column in DataProcessor.numeric_columns(ordered):
        if column in time_columns:
            continue
        values = DataProcessor.coerce_numeric(ordered[column]).tolist()
        prediction = predict_series(column, values, thresholds)
        if prediction is None:
            continue
        predictions.append(prediction)

        name = column.replace("_", " ")
        if prediction.relative_trend > thresholds.trend_high:
            recommendations.append(
                f"{name.capitalize()} is increasing significantly. Consider implementing preventive measures."
            )
        if prediction.mean > thresholds.mean_high:
            recommendations.append(
                f"High average {name} detected ({prediction.mean:.1f}). Review and optimize current processes."
            )
        periods = high_risk_periods(labels, values, prediction.mean + prediction.std_dev)
        if periods:
            recommendations.append(f"Focus on high-risk periods for {name}: {', '.join(periods[:3])}")

    logger.info(f"Predictive augmentation on '{time_column}': {len(predictions)} series analysed")
    return predictions, recommendations
