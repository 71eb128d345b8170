import time

import pytest

from tas_chat.data.registry import HELP_QUERY
from tas_chat.models.session import TurnRole

from conftest import FakeExecutor, FakeResolver


def template(registry, category):
    return registry.get(category).template


@pytest.mark.asyncio
async def test_active_tenants_end_to_end(registry, make_orchestrator, tenants_result):
    orchestrator, executor = make_orchestrator({template(registry, "active_tenants"): tenants_result})

    response = await orchestrator.handle_turn("s1", "show active tenants")

    assert response.category == "active_tenants"
    assert executor.executed == [template(registry, "active_tenants")]
    assert response.result.success
    assert "2 of 5" in response.insight.summary
    assert response.message.startswith(response.insight.summary)
    # 布尔和文本列没有可绘制的数值
    assert response.chart is None
    assert response.follow_ups


@pytest.mark.asyncio
async def test_location_follow_up_uses_previous_result(registry, make_orchestrator, location_result):
    orchestrator, _ = make_orchestrator({template(registry, "colleagues_by_location"): location_result})

    first = await orchestrator.handle_turn("s1", "show colleagues by location")
    assert first.chart.kind == "bar"

    second = await orchestrator.handle_turn("s1", "tell me more about that location")
    assert second.resolved_utterance.endswith("for Location_16599b2c")


@pytest.mark.asyncio
async def test_unmatched_utterance_returns_help(make_orchestrator):
    orchestrator, executor = make_orchestrator()

    response = await orchestrator.handle_turn("s1", "what is the weather")

    assert response.category == "unknown"
    assert executor.executed == [HELP_QUERY]
    assert response.insight.summary.startswith("I couldn't match your question to a known query.")
    assert "show active tenants" in response.message
    assert response.chart is None


@pytest.mark.asyncio
async def test_freeform_query_from_fallback(make_orchestrator):
    resolver = FakeResolver("SELECT location_name FROM tas_demo.location")
    orchestrator, executor = make_orchestrator(resolver=resolver)

    response = await orchestrator.handle_turn("s1", "list location names")

    assert response.category == "freeform"
    assert executor.executed == ["SELECT location_name FROM tas_demo.location"]
    # FakeExecutor 对未预设的查询返回失败结果
    assert not response.result.success
    assert response.message.startswith("I encountered an error while processing your query")


@pytest.mark.asyncio
async def test_query_timeout_becomes_failed_result(registry, make_orchestrator, tenants_result):
    class SlowExecutor(FakeExecutor):
        def execute(self, sql):
            time.sleep(0.5)
            return super().execute(sql)

    orchestrator, _ = make_orchestrator(query_timeout=0.05)
    orchestrator.executor = SlowExecutor({template(registry, "active_tenants"): tenants_result})

    response = await orchestrator.handle_turn("s1", "show active tenants")

    assert not response.result.success
    assert response.result.error_message == "Query timed out after 0.05 seconds"
    assert orchestrator.get_history("s1")[-1].role == TurnRole.ERROR


@pytest.mark.asyncio
async def test_unexpected_error_is_reported_not_raised(make_orchestrator):
    orchestrator, _ = make_orchestrator()

    class Broken:
        def execute(self, sql):
            raise RuntimeError("driver exploded")

    orchestrator.executor = Broken()
    response = await orchestrator.handle_turn("s1", "show active tenants")

    assert not response.result.success
    assert response.result.error_message == "An unexpected error occurred while processing your message."


@pytest.mark.asyncio
async def test_history_records_user_and_assistant_turns(registry, make_orchestrator, tenants_result):
    orchestrator, _ = make_orchestrator({template(registry, "active_tenants"): tenants_result})

    await orchestrator.handle_turn("s1", "show active tenants")
    await orchestrator.handle_turn("s1", "what is the weather")

    roles = [turn.role for turn in orchestrator.get_history("s1")]
    assert roles == [TurnRole.USER, TurnRole.ASSISTANT, TurnRole.USER, TurnRole.ASSISTANT]
    assert orchestrator.get_session_info("s1").turn_count == 4

    orchestrator.clear_session("s1")
    assert orchestrator.get_history("s1") == []
    assert orchestrator.get_session_info("s1") is None


@pytest.mark.asyncio
async def test_missing_session_id_creates_one(make_orchestrator):
    orchestrator, _ = make_orchestrator()
    response = await orchestrator.handle_turn(None, "hello")
    assert response.session_id
    assert len(orchestrator.get_history(response.session_id)) == 2


@pytest.mark.asyncio
async def test_create_session_is_visible(make_orchestrator):
    orchestrator, _ = make_orchestrator()
    session_id = await orchestrator.create_session()
    info = orchestrator.get_session_info(session_id)
    assert info.turn_count == 0
    assert "Show tenant overview" in orchestrator.list_suggestions()


@pytest.mark.asyncio
async def test_follow_up_flag_is_reported(registry, make_orchestrator, location_result):
    orchestrator, _ = make_orchestrator({template(registry, "colleagues_by_location"): location_result})

    first = await orchestrator.handle_turn("s1", "show colleagues by location")
    second = await orchestrator.handle_turn("s1", "tell me more about that location")

    assert first.is_follow_up is False
    assert second.is_follow_up is True


@pytest.mark.asyncio
async def test_database_status_and_tables(make_orchestrator):
    orchestrator, executor = make_orchestrator()
    assert await orchestrator.check_database() is True
    assert await orchestrator.list_tables() == ["location", "tenant"]

    executor.connected = False
    assert await orchestrator.check_database() is False
