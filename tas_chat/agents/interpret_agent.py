from typing import Dict, Any, Optional, List
import logging

from .base_agent import BaseAgent
from ..data.processor import DataProcessor
from ..models.analysis import ChartSpec, Insight, ResultSet
from ..models.patterns import QueryCategory
from ..models.session import Turn, TurnRole
from ..orchestrator.session_store import SessionStore

logger = logging.getLogger(__name__)

# 结果首行中记录为实体的列 (供后续轮次的上下文解析使用)
ENTITY_COLUMNS = {
    "tenant": ("tenant_name",),
    "location": ("location_name",),
    "exception": ("exception_type",),
    "colleague": ("colleague_name", "colleague_uuid"),
}

TENANT_CATEGORIES = {
    QueryCategory.ACTIVE_TENANTS.value,
    QueryCategory.ALL_TENANTS.value,
    QueryCategory.TENANT_OVERVIEW.value,
}
EXCEPTION_CATEGORIES = {
    QueryCategory.EXCEPTIONS_BY_TYPE.value,
    QueryCategory.DAILY_EXCEPTIONS.value,
    QueryCategory.EXCEPTION_STATUS_DISTRIBUTION.value,
}
COLLEAGUE_CATEGORIES = {
    QueryCategory.COLLEAGUES_BY_LOCATION.value,
    QueryCategory.COLLEAGUE_ACTIVITY.value,
    QueryCategory.TOP_COLLEAGUES.value,
}

CANNED_SUGGESTIONS = {
    "tenant": ["Show me more details about a specific tenant", "Which tenants have the most exceptions?"],
    "exception": ["What's the average resolution time?", "Show me exception trends by week"],
    "colleague": ["Which colleagues have the most shifts?", "Show colleague distribution by shift time"],
}


def _topic(category: str, utterance: str) -> Optional[str]:
    if category in TENANT_CATEGORIES:
        return "tenant"
    if category in EXCEPTION_CATEGORIES:
        return "exception"
    if category in COLLEAGUE_CATEGORIES:
        return "colleague"
    if category == QueryCategory.FREEFORM.value:
        lowered = utterance.lower()
        for topic in ("tenant", "exception", "colleague"):
            if topic in lowered:
                return topic
    return None


class InterpretationAgent(BaseAgent):
    """负责组装最终回复并写入会话历史的智能体"""

    required_inputs = ("session_id", "utterance", "query", "category", "result", "insight")

    def __init__(self, session_store: SessionStore, max_follow_ups: int = 5):
        super().__init__("Interpretation")
        self.session_store = session_store
        self.max_follow_ups = max_follow_ups

    async def process(self, input_data: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Optional[Turn]:
        if not await self.validate_input(input_data):
            return None
        return self.compose(
            input_data["session_id"],
            input_data["utterance"],
            input_data["query"],
            input_data["category"],
            input_data["result"],
            input_data.get("chart"),
            input_data["insight"]
        )

    def compose(self, session_id: str, utterance: str, query: str, category: str,
                result_set: ResultSet, chart: Optional[ChartSpec], insight: Insight) -> Turn:
        """
        组装回复消息并追加到会话历史

        Returns:
            新的助手轮次 (查询失败时角色为 error)
        """
        follow_ups = self.follow_ups(category, utterance, insight)

        if not result_set.success:
            text = f"I encountered an error while processing your query: {result_set.error_message}"
            text += self._bullets("You can try one of these instead:", follow_ups)
            turn = Turn(
                role=TurnRole.ERROR,
                text=text,
                utterance=utterance,
                query=query,
                category=category,
                row_count=0,
                follow_ups=follow_ups
            )
        else:
            turn = Turn(
                role=TurnRole.ASSISTANT,
                text=self.build_message(insight, chart, follow_ups),
                utterance=utterance,
                query=query,
                category=category,
                row_count=result_set.row_count,
                insight=insight,
                entities=self.extract_entities(result_set),
                follow_ups=follow_ups
            )

        self.session_store.append(session_id, turn)
        logger.info(f"Composed {turn.role.value} turn for session {session_id} ({len(follow_ups)} follow-ups)")
        return turn

    def build_message(self, insight: Insight, chart: Optional[ChartSpec], follow_ups: List[str]) -> str:
        parts = [insight.summary]
        if insight.findings:
            lines = ["Key Findings:"]
            for finding in insight.findings:
                suffix = f" ({finding.value})" if finding.value else ""
                lines.append(f"• {finding.message}{suffix}")
            parts.append("\n".join(lines))
        if chart is not None:
            parts.append(f"I've prepared a {chart.kind} chart to visualize this data.")
        message = "\n\n".join(parts)
        return message + self._bullets("You might also ask:", follow_ups)

    def follow_ups(self, category: str, utterance: str, insight: Insight) -> List[str]:
        """洞察中的建议 (去重、最多 max_follow_ups 条)，再追加类别相关的固定建议"""
        suggestions: List[str] = []
        seen = set()
        for suggestion in insight.recommendations:
            key = suggestion.strip().lower()
            if not key or key in seen:
                continue
            seen.add(key)
            suggestions.append(suggestion.strip())
            if len(suggestions) >= self.max_follow_ups:
                break

        topic = _topic(category, utterance)
        for canned in CANNED_SUGGESTIONS.get(topic, []):
            if canned.lower() not in seen:
                seen.add(canned.lower())
                suggestions.append(canned)
        return suggestions

    @staticmethod
    def extract_entities(result_set: ResultSet) -> Dict[str, str]:
        if result_set.is_empty:
            return {}
        top_row = result_set.records()[0]
        entities = {}
        for kind, columns in ENTITY_COLUMNS.items():
            for column in columns:
                value = top_row.get(column)
                if value is not None and str(value).strip():
                    entities[kind] = DataProcessor.as_label(value)
                    break
        return entities

    @staticmethod
    def _bullets(heading: str, items: List[str]) -> str:
        if not items:
            return ""
        return "\n\n" + heading + "\n" + "\n".join(f"• {item}" for item in items)
