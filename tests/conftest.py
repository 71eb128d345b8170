import itertools
from typing import Dict, List, Optional

import pytest

from tas_chat.data.registry import build_default_registry
from tas_chat.models.analysis import ResultSet
from tas_chat.orchestrator.orchestrator import Orchestrator
from tas_chat.orchestrator.session_store import SessionStore


class FakeClock:
    """可手动推进的单调时钟"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExecutor:
    """按SQL返回预设结果的执行器，未预设的查询返回帮助文本结果"""

    def __init__(self, results: Optional[Dict[str, ResultSet]] = None):
        self.results = results or {}
        self.executed: List[str] = []
        self.connected = True

    def test_connection(self) -> bool:
        return self.connected

    def list_tables(self, schema: str) -> List[str]:
        return ["location", "tenant"] if self.connected else []

    def execute(self, sql: str) -> ResultSet:
        self.executed.append(sql)
        if sql in self.results:
            return self.results[sql].model_copy(update={"query": sql})
        if sql.startswith("SELECT 'Available queries"):
            return ResultSet(query=sql, columns=["message"], rows=[[sql.split("'")[1]]])
        return ResultSet.failure(sql, "relation does not exist")


class FakeResolver:
    def __init__(self, answer: Optional[str] = None, error: Optional[Exception] = None):
        self.answer = answer
        self.error = error
        self.calls = []

    async def resolve(self, utterance: str, context: str, schema: str) -> Optional[str]:
        self.calls.append((utterance, context, schema))
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def registry():
    return build_default_registry()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(history_size=10, timeout=1800, clock=clock)


@pytest.fixture
def tenants_result():
    """5个租户，其中2个活跃"""
    rows = []
    for i, active in zip(itertools.count(1), [True, False, True, False, False]):
        rows.append([f"id-{i}", f"Tenant_{i:02d}", f"T{i}", "2024-01-0%d" % i, active])
    return ResultSet(
        columns=["tenant_id", "tenant_name", "tenant_code", "onboarded_date_time_utc", "is_active"],
        rows=rows
    )


@pytest.fixture
def location_result():
    return ResultSet(
        columns=["location_name", "tenant_name", "colleague_count"],
        rows=[
            ["Location_16599b2c", "Tenant_ab12", 42],
            ["Location_77aa", "Tenant_ab12", 10],
            ["Location_0001", "Tenant_cd34", 2],
        ]
    )


@pytest.fixture
def make_orchestrator(registry, store):
    def factory(results=None, resolver=None, query_timeout=5.0):
        executor = FakeExecutor(results)
        orchestrator = Orchestrator(
            registry=registry,
            session_store=store,
            executor=executor,
            fallback_resolver=resolver,
            query_timeout=query_timeout
        )
        return orchestrator, executor
    return factory
