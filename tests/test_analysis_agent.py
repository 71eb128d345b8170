import re

import pytest

from tas_chat.agents.analysis_agent import AnalysisExecutionAgent
from tas_chat.analytics.predictive import RiskThresholds
from tas_chat.analytics.strategies import NO_DATA_SUMMARY, STRATEGIES
from tas_chat.models.analysis import ResultSet


@pytest.fixture
def agent():
    return AnalysisExecutionAgent(RiskThresholds())


def test_failed_and_empty_results_have_no_findings(agent):
    for result in (ResultSet.failure("SELECT 1", "boom"), ResultSet(columns=["a"], rows=[])):
        insight = agent.analyze("active_tenants", result)
        assert insight.summary == NO_DATA_SUMMARY
        assert insight.findings == []
        assert insight.recommendations


def test_active_tenants_two_of_five(agent, tenants_result):
    insight = agent.analyze("active_tenants", tenants_result)

    assert "2 of 5" in insight.summary
    warning = next(f for f in insight.findings if f.type == "WARNING")
    assert warning.message == "3 of 5 tenants are inactive (60.0%)"
    assert warning.value == "60.0%"


def test_colleagues_by_location(agent, location_result):
    insight = agent.analyze("colleagues_by_location", location_result)

    assert insight.summary == "Found 54 colleagues distributed across 3 locations."
    messages = [f.message for f in insight.findings]
    assert "Location_16599b2c has the most colleagues" in messages
    assert "1 locations have fewer than 3 colleagues" in messages
    assert insight.highlights.top_value == "Location_16599b2c"
    assert insight.highlights.total == 54


def test_large_workforce_adds_recommendation(agent):
    result = ResultSet(columns=["location_name", "colleague_count"], rows=[["A", 80], ["B", 70]])
    insight = agent.analyze("colleagues_by_location", result)
    assert any("150 colleagues" in r for r in insight.recommendations)


def test_daily_exceptions_resolution_rate(agent):
    result = ResultSet(
        columns=["exception_date", "total_exceptions", "resolved_count", "open_count"],
        rows=[
            ["2024-01-03", 10, 6, 2],
            ["2024-01-02", 4, 1, 3],
            ["2024-01-01", 6, 3, 1],
        ]
    )
    insight = agent.analyze("daily_exceptions", result)

    messages = [f.message for f in insight.findings]
    # resolved / (resolved + open) = 10 / 16
    assert "Overall resolution rate: 62.5%" in messages
    assert "Peak exception day: 2024-01-03" in messages
    assert insight.summary == "Analyzed exception trends over 3 days with 20 total exceptions."
    assert {p.column for p in insight.predictions} == {"total_exceptions", "resolved_count", "open_count"}


def test_exception_status_distribution(agent):
    result = ResultSet(
        columns=["status", "tenant_name", "count"],
        rows=[["OPEN", "T1", 2], ["RESOLVED", "T1", 6], ["RESOLVED", "T2", 2]]
    )
    insight = agent.analyze("exception_status_distribution", result)
    messages = {f.message for f in insight.findings}
    assert messages == {"OPEN: 20.0% of exceptions", "RESOLVED: 80.0% of exceptions"}
    assert "2 tenants" in insight.summary


def test_colleague_activity_flags_at_risk(agent):
    result = ResultSet(
        columns=["colleague_uuid", "tenant_name", "location_name", "total_shifts", "total_exceptions"],
        rows=[
            ["c1", "T", "L", 10, 9],
            ["c2", "T", "L", 10, 1],
            ["c3", "T", "L", 10, 1],
            ["c4", "T", "L", 0, 2],
        ]
    )
    insight = agent.analyze("colleague_activity", result)
    warning = next(f for f in insight.findings if f.type == "WARNING")
    assert warning.value == "1"
    assert "Colleague c1 has the most exceptions" in [f.message for f in insight.findings]


def test_top_colleagues_high_risk(agent):
    result = ResultSet(
        columns=["colleague_uuid", "colleague_name", "exception_count", "exception_reason"],
        rows=[["u1", "Ann", 12, "High risk - frequent exceptions"], ["u2", "Bob", 3, "General exceptions"]]
    )
    insight = agent.analyze("top_colleagues", result)
    messages = [f.message for f in insight.findings]
    assert "Ann has the most exceptions" in messages
    assert "1 colleagues have more than 10 exceptions" in messages


def test_unknown_category_uses_generic_insight(agent):
    result = ResultSet(columns=["x"], rows=[[1], [2]])
    insight = agent.analyze("freeform", result)
    assert insight.summary == "Your query returned 2 results."


def test_strategy_failure_falls_back_to_generic(agent):
    # 缺少 colleague_count 列
    result = ResultSet(columns=["location_name"], rows=[["A"]])
    insight = agent.analyze("colleagues_by_location", result)
    assert insight.summary == "Your query returned 1 results."


def test_malformed_cells_are_coerced(agent):
    result = ResultSet(
        columns=["location_name", "colleague_count"],
        rows=[["A", "7"], ["B", "n/a"], ["C", None]]
    )
    insight = agent.analyze("colleagues_by_location", result)
    assert insight.summary == "Found 7 colleagues distributed across 3 locations."


def test_findings_sorted_by_significance(agent, location_result):
    insight = agent.analyze("colleagues_by_location", location_result)
    significances = [f.significance for f in insight.findings]
    assert significances == sorted(significances, reverse=True)
    assert all(0.0 <= s <= 1.0 for s in significances)


def test_exceptions_by_type(agent):
    result = ResultSet(
        columns=["exception_type", "exception_count", "avg_duration_mins"],
        rows=[["LATE_IN", 30, 12.5], ["ABSENCE", 10, 480]]
    )
    insight = agent.analyze("exceptions_by_type", result)

    assert insight.summary == "Analyzed 40 total exceptions across 2 different types."
    trend = next(f for f in insight.findings if f.type == "TREND")
    assert trend.message == "LATE_IN is the most common exception type"
    assert trend.value == "30"
    assert "Average duration of LATE_IN: 12.5 minutes" in [f.message for f in insight.findings]


def test_shift_patterns_peak_hour(agent):
    result = ResultSet(
        columns=["shift_hour", "shift_count", "unique_colleagues"],
        rows=[[6, 5, 4], [9, 12, 10], [14, 3, 3]]
    )
    insight = agent.analyze("shift_patterns", result)

    assert insight.summary == "Analyzed 20 shifts across 3 different start times."
    peak = next(f for f in insight.findings if f.message.startswith("Most shifts"))
    assert peak.message == "Most shifts start at 9:00"
    assert peak.value == "12"


def test_tenant_overview(agent):
    result = ResultSet(
        columns=["tenant_name", "is_active", "location_count", "colleague_count", "shift_count"],
        rows=[["T1", True, 2, 40, 0], ["T2", False, 1, 5, 3]]
    )
    insight = agent.analyze("tenant_overview", result)

    assert insight.summary == "Overview of 2 tenants in the system."
    messages = [f.message for f in insight.findings]
    assert "1 of 2 tenants are active" in messages
    assert "T1 has the most colleagues" in messages
    assert "1 tenants have no planned shifts" in messages


@pytest.mark.asyncio
async def test_process_validates_input(agent, tenants_result):
    assert (await agent.process({})).summary == NO_DATA_SUMMARY
    insight = await agent.process({"category": "all_tenants", "result": tenants_result})
    assert "2 of 5" in insight.summary


def _numbers(pattern, text):
    match = re.search(pattern, text)
    assert match, (pattern, text)
    return [float(g) for g in match.groups()]


def _finding(insight, pattern):
    return next(f for f in insight.findings if re.search(pattern, f.message))


def _check_tenant_status(insight):
    active, total = _numbers(r"(\d+) of (\d+) tenants are active\.", insight.summary)
    assert _numbers(r"^(\d+) of (\d+) tenants are active$", _finding(insight, "are active$").message) == [active, total]
    inactive, inactive_total = _numbers(r"(\d+) of (\d+)", _finding(insight, "inactive").message)
    assert inactive_total == total
    assert inactive == total - active


def _check_locations(insight):
    total, locations = _numbers(r"Found (\d+) colleagues distributed across (\d+) locations", insight.summary)
    assert insight.highlights.total == total
    assert float(_finding(insight, "has the most colleagues").value) <= total
    assert _numbers(r"(\d+) locations have", _finding(insight, "fewer than").message)[0] <= locations


def _check_exception_types(insight):
    total, types = _numbers(r"Analyzed (\d+) total exceptions across (\d+) different types", insight.summary)
    assert insight.highlights.total == total
    assert float(_finding(insight, "most common").value) <= total


def _check_daily(insight):
    _, total = _numbers(r"over (\d+) days with (\d+) total exceptions", insight.summary)
    assert insight.highlights.total == total
    assert float(_finding(insight, "Peak exception day").value) <= total


def _check_overview(insight):
    tenants = _numbers(r"Overview of (\d+) tenants", insight.summary)[0]
    active, of_total = _numbers(r"(\d+) of (\d+) tenants are active", _finding(insight, "are active").message)
    assert of_total == tenants
    assert active <= tenants
    assert float(_finding(insight, "no planned shifts").value) <= tenants


def _check_shifts(insight):
    total, _ = _numbers(r"Analyzed (\d+) shifts across (\d+) different start times", insight.summary)
    assert insight.highlights.total == total
    assert float(_finding(insight, "Most shifts").value) <= total


def _check_status(insight):
    total = _numbers(r"breakdown of (\d+) exceptions", insight.summary)[0]
    assert sum(float(f.value) for f in insight.findings) == total
    shares = [_numbers(r"([\d.]+)% of exceptions", f.message)[0] for f in insight.findings]
    assert sum(shares) == pytest.approx(100.0, abs=0.2)


def _check_activity(insight):
    colleagues, exceptions, _ = _numbers(
        r"activity for (\d+) colleagues with (\d+) exceptions across (\d+) shifts", insight.summary)
    assert insight.highlights.total == exceptions
    assert float(_finding(insight, "has the most exceptions").value) <= exceptions
    assert float(_finding(insight, "exception rates above").value) <= colleagues


def _check_top(insight):
    colleagues, total = _numbers(r"Top (\d+) colleagues account for (\d+) exceptions", insight.summary)
    assert insight.highlights.total == total
    assert float(_finding(insight, "has the most exceptions").value) <= total
    assert float(_finding(insight, "more than").value) <= colleagues


def _check_help(insight):
    assert insight.findings == []


TENANT_ROWS = ResultSet(
    columns=["tenant_name", "is_active"],
    rows=[["A", True], ["B", False], ["C", True], ["D", False], ["E", False]]
)

CONSISTENCY_CASES = {
    "active_tenants": (TENANT_ROWS, _check_tenant_status),
    "all_tenants": (TENANT_ROWS, _check_tenant_status),
    "colleagues_by_location": (
        ResultSet(columns=["location_name", "colleague_count"], rows=[["A", 42], ["B", 10], ["C", 2]]),
        _check_locations),
    "exceptions_by_type": (
        ResultSet(columns=["exception_type", "exception_count"], rows=[["LATE_IN", 30], ["ABSENCE", 10]]),
        _check_exception_types),
    "daily_exceptions": (
        ResultSet(columns=["exception_date", "total_exceptions", "resolved_count", "open_count"],
                  rows=[["2024-01-03", 10, 6, 2], ["2024-01-02", 4, 1, 3], ["2024-01-01", 6, 3, 1]]),
        _check_daily),
    "tenant_overview": (
        ResultSet(columns=["tenant_name", "is_active", "colleague_count", "shift_count"],
                  rows=[["T1", True, 40, 0], ["T2", False, 5, 3]]),
        _check_overview),
    "shift_patterns": (
        ResultSet(columns=["shift_hour", "shift_count"], rows=[[6, 5], [9, 12], [14, 3]]),
        _check_shifts),
    "exception_status_distribution": (
        ResultSet(columns=["status", "tenant_name", "count"],
                  rows=[["OPEN", "T1", 1], ["RESOLVED", "T1", 5], ["PENDING", "T2", 1]]),
        _check_status),
    "colleague_activity": (
        ResultSet(columns=["colleague_uuid", "total_shifts", "total_exceptions"],
                  rows=[["c1", 10, 9], ["c2", 10, 1], ["c3", 10, 1]]),
        _check_activity),
    "top_colleagues": (
        ResultSet(columns=["colleague_name", "exception_count"], rows=[["Ann", 12], ["Bob", 3]]),
        _check_top),
    "unknown": (
        ResultSet(columns=["message"], rows=[["Available queries: ..."]]),
        _check_help),
}


def test_every_strategy_has_a_consistency_case():
    assert set(CONSISTENCY_CASES) == set(STRATEGIES)


@pytest.mark.parametrize("category", sorted(CONSISTENCY_CASES))
def test_summary_and_findings_agree_on_counts(agent, category):
    result, check = CONSISTENCY_CASES[category]
    check(agent.analyze(category, result))


def test_infinite_cells_are_coerced_to_zero(agent):
    result = ResultSet(columns=["location_name", "colleague_count"], rows=[["A", "inf"], ["B", 2], ["C", "-Infinity"]])
    insight = agent.analyze("colleagues_by_location", result)

    assert insight.summary == "Found 2 colleagues distributed across 3 locations."
    assert insight.highlights.top_value == "B"


def test_non_finite_result_cells_become_none():
    result = ResultSet(columns=["a", "b", "c"], rows=[[float("inf"), float("nan"), 1.5]])
    assert result.rows == [[None, None, 1.5]]


def test_daily_exceptions_trend_comes_from_prediction(agent):
    result = ResultSet(
        columns=["exception_date", "total_exceptions", "resolved_count", "open_count"],
        rows=[["2024-01-03", 10, 6, 2], ["2024-01-02", 4, 1, 3], ["2024-01-01", 6, 3, 1]]
    )
    insight = agent.analyze("daily_exceptions", result)
    # 按日期升序: 6, 4, 10
    assert insight.highlights.trend == "increasing"


def test_shift_patterns_coverage_recommendations(agent):
    result = ResultSet(columns=["shift_hour", "shift_count"], rows=[[6, 5], [9, 12], [14, 3]])
    recommendations = agent.analyze("shift_patterns", result).recommendations

    # 平均 6.67，峰值 12
    assert recommendations[:3] == [
        "Large variance in shift coverage (80.0%). Consider load balancing.",
        "Peak shift time is 9:00. Ensure adequate staffing.",
        "Maintain minimum staffing of 8 per shift based on historical data.",
    ]
