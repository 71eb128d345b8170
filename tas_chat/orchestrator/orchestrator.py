from typing import Any, List, Optional
import uuid
import asyncio
import logging
import traceback

from ..agents.analysis_agent import AnalysisExecutionAgent
from ..agents.context_agent import ContextResolutionAgent
from ..agents.intent_agent import IntentUnderstandingAgent
from ..agents.interpret_agent import InterpretationAgent
from ..agents.viz_agent import VisualizationAgent
from ..analytics.predictive import RiskThresholds
from ..analytics.strategies import no_data_insight
from ..config import settings
from ..data.loader import QueryExecutor
from ..data.registry import SUGGESTIONS, PatternRegistry, build_default_registry
from ..models.analysis import ResultSet, TurnResponse
from ..models.session import SessionModel, Turn, TurnRole
from ..utils.llm_utils import build_resolver_from_settings
from .session_store import SessionStore

logger = logging.getLogger(__name__)

# 创建全局orchestrator实例
_orchestrator_instance = None

def get_orchestrator():
    """获取全局orchestrator实例"""
    global _orchestrator_instance
    if _orchestrator_instance is None:
        _orchestrator_instance = Orchestrator()
        logger.info("Created new orchestrator instance")
    return _orchestrator_instance

class Orchestrator:
    """
    智能体协调器，负责串联对话流水线:

    语句 -> 上下文解析 -> 查询解析 -> 执行查询 -> 洞察 + 图表 (并发) -> 组装回复
    """

    def __init__(self,
                 registry: Optional[PatternRegistry] = None,
                 session_store: Optional[SessionStore] = None,
                 executor: Optional[Any] = None,
                 fallback_resolver: Optional[Any] = None,
                 thresholds: Optional[RiskThresholds] = None,
                 query_timeout: Optional[float] = None):
        # 注册表在启动时构建一次，显式传给需要它的智能体
        self.registry = registry or build_default_registry()
        self.session_store = session_store or SessionStore(
            history_size=settings.HISTORY_SIZE,
            timeout=settings.SESSION_TIMEOUT
        )
        self.executor = executor or QueryExecutor(settings.DATABASE_URL)
        if fallback_resolver is None:
            fallback_resolver = build_resolver_from_settings()
        self.query_timeout = query_timeout or settings.QUERY_TIMEOUT_SECONDS

        # 初始化智能体
        self.context_agent = ContextResolutionAgent()
        self.intent_agent = IntentUnderstandingAgent(
            self.registry,
            self.session_store,
            fallback_resolver=fallback_resolver,
            schema_name=settings.SCHEMA_NAME,
            context_turns=settings.CONTEXT_TURNS
        )
        self.analysis_agent = AnalysisExecutionAgent(thresholds)
        self.viz_agent = VisualizationAgent(self.registry)
        self.interpret_agent = InterpretationAgent(self.session_store, settings.MAX_FOLLOW_UPS)
        logger.info("Orchestrator initialized")

    async def create_session(self) -> str:
        """创建新的空会话并返回会话ID"""
        session_id = str(uuid.uuid4())
        self.session_store.touch(session_id)
        return session_id

    def get_session_info(self, session_id: str) -> Optional[SessionModel]:
        return self.session_store.session_info(session_id)

    async def handle_turn(self, session_id: Optional[str], utterance: str) -> TurnResponse:
        """
        处理一次用户输入

        Args:
            session_id: 会话ID，为空时新建会话
            utterance: 用户输入

        Returns:
            完整回复；任何失败都降级为错误回复而不是抛出异常
        """
        session_id = session_id or str(uuid.uuid4())
        logger.info(f"Processing message for session {session_id}: {utterance}")

        # 先取历史再写入本轮用户输入，上下文解析只看之前的轮次
        history = self.session_store.history(session_id)
        self.session_store.append(session_id, Turn(role=TurnRole.USER, text=utterance))

        resolved = utterance
        is_follow_up = False
        query, category = "", "unknown"
        try:
            context_result = await self.context_agent.process(
                {"utterance": utterance, "history": history},
                {"session_id": session_id}
            )
            resolved = context_result["resolved"]
            is_follow_up = context_result["is_follow_up"]

            query, category = await self.intent_agent.resolve(resolved, session_id)
            logger.info(f"Resolved '{resolved}' to category '{category}'")

            result = await self._execute(query)
            insight, chart = await asyncio.gather(
                asyncio.to_thread(self.analysis_agent.analyze, category, result),
                asyncio.to_thread(self.viz_agent.project, category, result)
            )
        except Exception as e:
            logger.error(f"Error processing message: {e}")
            logger.error(traceback.format_exc())
            result = ResultSet.failure(query, "An unexpected error occurred while processing your message.")
            insight, chart = no_data_insight(), None

        turn = self.interpret_agent.compose(session_id, utterance, query, category, result, chart, insight)
        return TurnResponse(
            session_id=session_id,
            message=turn.text,
            query=query,
            category=category,
            resolved_utterance=resolved,
            is_follow_up=is_follow_up,
            insight=insight,
            chart=chart,
            result=result,
            follow_ups=turn.follow_ups,
            timestamp=turn.timestamp
        )

    async def _execute(self, query: str) -> ResultSet:
        """在工作线程中执行阻塞的数据库查询，超时记为失败结果"""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.executor.execute, query),
                timeout=self.query_timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Query timed out after {self.query_timeout}s")
            return ResultSet.failure(query, f"Query timed out after {self.query_timeout:g} seconds")

    def get_history(self, session_id: str) -> List[Turn]:
        return self.session_store.history(session_id)

    def clear_session(self, session_id: str) -> None:
        self.session_store.clear(session_id)

    def list_suggestions(self) -> List[str]:
        return list(SUGGESTIONS)

    async def check_database(self) -> bool:
        return await asyncio.to_thread(self.executor.test_connection)

    async def list_tables(self) -> List[str]:
        return await asyncio.to_thread(self.executor.list_tables, settings.SCHEMA_NAME)
