"""
按查询类别分发的洞察策略

每个策略是一个纯函数 DataFrame -> Insight，摘要和发现使用同一组聚合值。
缺少所需列时策略抛出 KeyError，由分析引擎退回通用洞察。
"""
import math
from typing import Callable, Dict, List, Optional

import pandas as pd

from ..data.processor import DataProcessor
from ..models.analysis import Finding, Highlights, Insight
from ..models.patterns import QueryCategory

NO_DATA_SUMMARY = "No data found for your query."

DEFAULT_SUGGESTIONS = [
    "Show tenant overview",
    "Show exceptions by type",
    "Show colleagues by location",
]

UNDERSTAFFED_THRESHOLD = 3
LARGE_WORKFORCE_THRESHOLD = 100
AT_RISK_RATE_MULTIPLIER = 1.5
HIGH_RISK_EXCEPTION_COUNT = 10
COVERAGE_GAP_RATIO = 0.5
STAFFING_BUFFER = 1.1

Strategy = Callable[[pd.DataFrame], Insight]


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


def _column(df: pd.DataFrame, *candidates: str) -> str:
    column = DataProcessor.find_column(list(df.columns), *candidates)
    if column is None:
        raise KeyError(f"none of the columns {candidates} found")
    return column


def _optional_column(df: pd.DataFrame, *candidates: str) -> Optional[str]:
    return DataProcessor.find_column(list(df.columns), *candidates)


def _fmt(value: float) -> str:
    return DataProcessor.as_label(float(value))


def _peak_significance(peak: float, mean: float) -> float:
    """峰值相对均值偏离越大，显著性越高"""
    if peak <= 0:
        return 0.5
    return clamp(0.5 + 0.5 * (peak - mean) / peak)


def no_data_insight() -> Insight:
    return Insight(summary=NO_DATA_SUMMARY, recommendations=list(DEFAULT_SUGGESTIONS))


def generic_insight(df: pd.DataFrame) -> Insight:
    count = len(df)
    return Insight(
        summary=f"Your query returned {count} results.",
        findings=[Finding(type="HIGHLIGHT", message=f"Found {count} records", value=str(count), significance=0.5)],
        recommendations=list(DEFAULT_SUGGESTIONS),
        explanation="The data has been retrieved successfully."
    )


def help_insight(df: pd.DataFrame) -> Insight:
    """帮助文本查询：直接展示常量结果中的文本"""
    column = _column(df, "message")
    text = str(df[column].iloc[0])
    return Insight(
        summary="I couldn't match your question to a known query. " + text,
        recommendations=list(DEFAULT_SUGGESTIONS)
    )


def tenant_status_insight(df: pd.DataFrame) -> Insight:
    active_column = _column(df, "is_active")
    total = len(df)
    active = int(sum(DataProcessor.is_truthy(v) for v in df[active_column].tolist()))
    inactive = total - active

    findings = [
        Finding(
            type="HIGHLIGHT",
            message=f"{active} of {total} tenants are active",
            value=str(active),
            significance=0.8
        )
    ]
    suggestions = ["Show tenant overview"]
    if inactive > 0:
        share = inactive / total
        findings.append(Finding(
            type="WARNING",
            message=f"{inactive} of {total} tenants are inactive ({share * 100:.1f}%)",
            value=f"{share * 100:.1f}%",
            significance=clamp(0.5 + 0.5 * share)
        ))
        suggestions.append("Show inactive tenant details")
    suggestions.append("Show colleagues by location")

    name_column = _optional_column(df, "tenant_name")
    return Insight(
        summary=f"{active} of {total} tenants are active.",
        findings=findings,
        recommendations=suggestions,
        highlights=Highlights(
            top_value=DataProcessor.as_label(df[name_column].iloc[0]) if name_column else None,
            total=float(total)
        )
    )


def colleagues_by_location_insight(df: pd.DataFrame) -> Insight:
    count_column = _column(df, "colleague_count")
    label_column = _column(df, "location_name")
    counts = DataProcessor.coerce_numeric(df[count_column])
    total = float(counts.sum())
    mean = float(counts.mean())

    top = counts.idxmax()
    bottom = counts.idxmin()
    top_label = DataProcessor.as_label(df[label_column].loc[top])
    findings = [
        Finding(
            type="HIGHLIGHT",
            message=f"{top_label} has the most colleagues",
            value=_fmt(counts.loc[top]),
            significance=_peak_significance(float(counts.loc[top]), mean)
        )
    ]

    understaffed = int((counts < UNDERSTAFFED_THRESHOLD).sum())
    if understaffed > 0:
        findings.append(Finding(
            type="WARNING",
            message=f"{understaffed} locations have fewer than {UNDERSTAFFED_THRESHOLD} colleagues",
            value=str(understaffed),
            significance=clamp(0.5 + 0.5 * understaffed / len(df))
        ))

    suggestions = [
        "Show colleague activity",
        "Show exceptions by location",
        "Show shift coverage by location",
    ]
    if total > LARGE_WORKFORCE_THRESHOLD:
        suggestions.insert(0, f"Review staffing balance across {len(df)} locations for {_fmt(total)} colleagues")

    return Insight(
        summary=f"Found {_fmt(total)} colleagues distributed across {len(df)} locations.",
        findings=findings,
        recommendations=suggestions,
        highlights=Highlights(
            top_value=top_label,
            bottom_value=DataProcessor.as_label(df[label_column].loc[bottom]),
            total=total,
            average=mean
        )
    )


def exceptions_by_type_insight(df: pd.DataFrame) -> Insight:
    count_column = _column(df, "exception_count")
    type_column = _column(df, "exception_type")
    counts = DataProcessor.coerce_numeric(df[count_column])
    total = float(counts.sum())

    top = counts.idxmax()
    top_type = DataProcessor.as_label(df[type_column].loc[top])
    share = float(counts.loc[top]) / total if total else 0.0
    findings = [
        Finding(
            type="TREND",
            message=f"{top_type} is the most common exception type",
            value=_fmt(counts.loc[top]),
            significance=clamp(0.5 + 0.5 * share)
        )
    ]

    duration_column = _optional_column(df, "avg_duration_mins", "avg_duration")
    if duration_column is not None and df[duration_column].loc[top] is not None:
        duration = DataProcessor.to_float(df[duration_column].loc[top])
        findings.append(Finding(
            type="HIGHLIGHT",
            message=f"Average duration of {top_type}: {duration:.1f} minutes",
            value=f"{duration:.1f}",
            significance=0.6
        ))

    return Insight(
        summary=f"Analyzed {_fmt(total)} total exceptions across {len(df)} different types.",
        findings=findings,
        recommendations=[
            "Show daily exceptions",
            "Show exception status distribution",
            "Show exceptions for specific colleague",
        ],
        highlights=Highlights(top_value=top_type, total=total, average=float(counts.mean()))
    )


def daily_exceptions_insight(df: pd.DataFrame) -> Insight:
    total_column = _column(df, "total_exceptions")
    resolved_column = _column(df, "resolved_count")
    open_column = _column(df, "open_count")
    date_column = _column(df, "exception_date", "date")

    totals = DataProcessor.coerce_numeric(df[total_column])
    resolved = float(DataProcessor.coerce_numeric(df[resolved_column]).sum())
    still_open = float(DataProcessor.coerce_numeric(df[open_column]).sum())
    total = float(totals.sum())
    closed_or_open = resolved + still_open
    resolution_rate = resolved / closed_or_open * 100 if closed_or_open else 0.0

    findings = [
        Finding(
            type="HIGHLIGHT",
            message=f"Overall resolution rate: {resolution_rate:.1f}%",
            value=f"{resolution_rate:.1f}%",
            significance=clamp(0.5 + (100 - resolution_rate) / 200)
        )
    ]
    peak = totals.idxmax()
    peak_day = DataProcessor.as_label(df[date_column].loc[peak])
    findings.append(Finding(
        type="ANOMALY",
        message=f"Peak exception day: {peak_day}",
        value=_fmt(totals.loc[peak]),
        significance=_peak_significance(float(totals.loc[peak]), float(totals.mean()))
    ))

    return Insight(
        summary=f"Analyzed exception trends over {len(df)} days with {_fmt(total)} total exceptions.",
        findings=findings,
        recommendations=[
            "Show exceptions by type",
            "Show unresolved exceptions",
            "Show exception details for peak day",
        ],
        highlights=Highlights(
            top_value=peak_day,
            total=total,
            average=float(totals.mean())
        )
    )


def tenant_overview_insight(df: pd.DataFrame) -> Insight:
    name_column = _column(df, "tenant_name")
    colleague_column = _column(df, "colleague_count")
    active_column = _optional_column(df, "is_active")
    shift_column = _optional_column(df, "shift_count")

    findings: List[Finding] = []
    if active_column is not None:
        active = int(sum(DataProcessor.is_truthy(v) for v in df[active_column].tolist()))
        findings.append(Finding(
            type="HIGHLIGHT",
            message=f"{active} of {len(df)} tenants are active",
            value=str(active),
            significance=0.8
        ))

    colleagues = DataProcessor.coerce_numeric(df[colleague_column])
    largest = colleagues.idxmax()
    largest_name = DataProcessor.as_label(df[name_column].loc[largest])
    findings.append(Finding(
        type="HIGHLIGHT",
        message=f"{largest_name} has the most colleagues",
        value=_fmt(colleagues.loc[largest]),
        significance=_peak_significance(float(colleagues.loc[largest]), float(colleagues.mean()))
    ))

    if shift_column is not None:
        without_shifts = int((DataProcessor.coerce_numeric(df[shift_column]) == 0).sum())
        if without_shifts > 0:
            findings.append(Finding(
                type="WARNING",
                message=f"{without_shifts} tenants have no planned shifts",
                value=str(without_shifts),
                significance=clamp(0.4 + 0.6 * without_shifts / len(df))
            ))

    return Insight(
        summary=f"Overview of {len(df)} tenants in the system.",
        findings=findings,
        recommendations=[
            "Show inactive tenant details",
            "Show shifts for specific tenant",
            "Show colleague distribution by tenant",
        ],
        highlights=Highlights(
            top_value=largest_name,
            total=float(colleagues.sum()),
            average=float(colleagues.mean())
        )
    )


def coverage_recommendations(counts: pd.Series, peak_hour: int) -> List[str]:
    """
    排班覆盖建议

    峰值超出平均值50%以上时提示负载均衡；最低排班人数取平均值加10%余量后向上取整。
    """
    average = float(counts.mean())
    peak = float(counts.max())
    recommendations = []
    if average > 0 and peak - average > average * COVERAGE_GAP_RATIO:
        recommendations.append(
            f"Large variance in shift coverage ({(peak - average) / average * 100:.1f}%). "
            "Consider load balancing."
        )
    recommendations.append(f"Peak shift time is {peak_hour}:00. Ensure adequate staffing.")
    recommendations.append(
        f"Maintain minimum staffing of {math.ceil(average * STAFFING_BUFFER)} per shift based on historical data."
    )
    return recommendations


def shift_patterns_insight(df: pd.DataFrame) -> Insight:
    count_column = _column(df, "shift_count")
    hour_column = _column(df, "shift_hour", "hour")
    counts = DataProcessor.coerce_numeric(df[count_column])
    total = float(counts.sum())

    peak = counts.idxmax()
    hour = int(DataProcessor.to_float(df[hour_column].loc[peak]))
    findings = [
        Finding(
            type="HIGHLIGHT",
            message=f"Most shifts start at {hour}:00",
            value=_fmt(counts.loc[peak]),
            significance=_peak_significance(float(counts.loc[peak]), float(counts.mean()))
        )
    ]

    return Insight(
        summary=f"Analyzed {_fmt(total)} shifts across {len(df)} different start times.",
        findings=findings,
        recommendations=coverage_recommendations(counts, hour) + [
            "Show shift coverage by day",
            "Show colleague shift assignments",
            "Show shift duration analysis",
        ],
        highlights=Highlights(top_value=f"{hour}:00", total=total, average=float(counts.mean()))
    )


def exception_status_insight(df: pd.DataFrame) -> Insight:
    status_column = _column(df, "status")
    count_column = _column(df, "count")
    tenant_column = _optional_column(df, "tenant_name")

    frame = pd.DataFrame({
        "status": df[status_column].map(DataProcessor.as_label),
        "count": DataProcessor.coerce_numeric(df[count_column]),
    })
    by_status = frame.groupby("status", sort=False)["count"].sum()
    total = float(by_status.sum())

    findings = []
    for status, count in by_status.items():
        share = float(count) / total if total else 0.0
        findings.append(Finding(
            type="WARNING" if status.upper() == "OPEN" and share > 0.5 else "HIGHLIGHT",
            message=f"{status}: {share * 100:.1f}% of exceptions",
            value=_fmt(count),
            significance=clamp(0.4 + 0.6 * share)
        ))

    tenants = df[tenant_column].nunique() if tenant_column else 0
    return Insight(
        summary=f"Exception status breakdown of {_fmt(total)} exceptions across {tenants} tenants.",
        findings=findings,
        recommendations=[
            "Show open exceptions details",
            "Show exception resolution time",
            "Show exceptions by tenant",
        ],
        highlights=Highlights(
            top_value=str(by_status.idxmax()) if len(by_status) else None,
            total=total
        )
    )


def colleague_activity_insight(df: pd.DataFrame) -> Insight:
    id_column = _column(df, "colleague_name", "colleague_uuid", "colleague")
    exception_column = _column(df, "total_exceptions", "exception_count")
    shift_column = _column(df, "total_shifts", "shift_count")

    exceptions = DataProcessor.coerce_numeric(df[exception_column])
    shifts = DataProcessor.coerce_numeric(df[shift_column])
    total_exceptions = float(exceptions.sum())
    total_shifts = float(shifts.sum())

    top = exceptions.idxmax()
    top_id = DataProcessor.as_label(df[id_column].loc[top])
    findings = [
        Finding(
            type="HIGHLIGHT",
            message=f"Colleague {top_id} has the most exceptions",
            value=_fmt(exceptions.loc[top]),
            significance=_peak_significance(float(exceptions.loc[top]), float(exceptions.mean()))
        )
    ]
    suggestions = ["Show top 5 colleagues generating exceptions", "Show shift patterns"]

    with_shifts = shifts > 0
    rates = exceptions[with_shifts] / shifts[with_shifts]
    if len(rates) > 0:
        average_rate = float(rates.mean())
        at_risk = rates[rates > average_rate * AT_RISK_RATE_MULTIPLIER]
        if len(at_risk) > 0:
            findings.append(Finding(
                type="WARNING",
                message=(f"{len(at_risk)} colleagues have exception rates above "
                         f"{AT_RISK_RATE_MULTIPLIER}x the average ({average_rate:.2f} per shift)"),
                value=str(len(at_risk)),
                significance=clamp(0.5 + 0.5 * len(at_risk) / len(rates))
            ))
            suggestions.append("Consider additional training or support for at-risk colleagues")

    return Insight(
        summary=(f"Analyzed activity for {len(df)} colleagues with {_fmt(total_exceptions)} exceptions "
                 f"across {_fmt(total_shifts)} shifts."),
        findings=findings,
        recommendations=suggestions,
        highlights=Highlights(top_value=top_id, total=total_exceptions, average=float(exceptions.mean()))
    )


def top_colleagues_insight(df: pd.DataFrame) -> Insight:
    id_column = _column(df, "colleague_name", "colleague_uuid", "colleague")
    count_column = _column(df, "exception_count", "total_exceptions")
    reason_column = _optional_column(df, "exception_reason")

    counts = DataProcessor.coerce_numeric(df[count_column])
    total = float(counts.sum())
    top = counts.idxmax()
    top_id = DataProcessor.as_label(df[id_column].loc[top])

    findings = [
        Finding(
            type="HIGHLIGHT",
            message=f"{top_id} has the most exceptions",
            value=_fmt(counts.loc[top]),
            significance=_peak_significance(float(counts.loc[top]), float(counts.mean()))
        )
    ]
    high_risk = int((counts > HIGH_RISK_EXCEPTION_COUNT).sum())
    if high_risk > 0:
        findings.append(Finding(
            type="WARNING",
            message=f"{high_risk} colleagues have more than {HIGH_RISK_EXCEPTION_COUNT} exceptions",
            value=str(high_risk),
            significance=clamp(0.6 + 0.4 * high_risk / len(df))
        ))
    if reason_column is not None:
        reason = df[reason_column].loc[top]
        if reason is not None:
            findings.append(Finding(
                type="HIGHLIGHT",
                message=f"Main reason for {top_id}: {reason}",
                significance=0.5
            ))

    return Insight(
        summary=f"Top {len(df)} colleagues account for {_fmt(total)} exceptions.",
        findings=findings,
        recommendations=["Show colleague activity", "Show exceptions by type", "Show daily exceptions"],
        highlights=Highlights(top_value=top_id, total=total, average=float(counts.mean()))
    )


STRATEGIES: Dict[str, Strategy] = {
    QueryCategory.ACTIVE_TENANTS.value: tenant_status_insight,
    QueryCategory.ALL_TENANTS.value: tenant_status_insight,
    QueryCategory.COLLEAGUES_BY_LOCATION.value: colleagues_by_location_insight,
    QueryCategory.EXCEPTIONS_BY_TYPE.value: exceptions_by_type_insight,
    QueryCategory.DAILY_EXCEPTIONS.value: daily_exceptions_insight,
    QueryCategory.TENANT_OVERVIEW.value: tenant_overview_insight,
    QueryCategory.SHIFT_PATTERNS.value: shift_patterns_insight,
    QueryCategory.EXCEPTION_STATUS_DISTRIBUTION.value: exception_status_insight,
    QueryCategory.COLLEAGUE_ACTIVITY.value: colleague_activity_insight,
    QueryCategory.TOP_COLLEAGUES.value: top_colleagues_insight,
    QueryCategory.UNKNOWN.value: help_insight,
}
