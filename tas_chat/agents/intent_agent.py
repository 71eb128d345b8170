import traceback
from typing import Dict, Any, Optional, Tuple

from .base_agent import BaseAgent
from ..data.registry import HELP_QUERY, SCHEMA_DESCRIPTION, PatternRegistry
from ..data.validator import QueryValidator
from ..models.patterns import QueryCategory
from ..orchestrator.session_store import SessionStore


class IntentUnderstandingAgent(BaseAgent):
    """负责把用户语句解析为只读查询和类别的智能体"""

    required_inputs = ("utterance",)

    def __init__(self, registry: PatternRegistry, session_store: SessionStore,
                 fallback_resolver: Optional[Any] = None, schema_name: str = "tas_demo",
                 context_turns: Optional[int] = None):
        super().__init__("IntentUnderstanding")
        self.registry = registry
        self.session_store = session_store
        self.fallback_resolver = fallback_resolver
        self.schema_name = schema_name
        self.context_turns = context_turns

    async def process(self, input_data: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        解析语句

        Args:
            input_data: {"utterance": 改写后的语句}
            context: {"session_id": 会话ID}

        Returns:
            {"query": SQL, "category": 类别}
        """
        if not await self.validate_input(input_data):
            return {"query": HELP_QUERY, "category": QueryCategory.UNKNOWN.value}

        session_id = (context or {}).get("session_id", "")
        query, category = await self.resolve(input_data["utterance"], session_id)
        return {"query": query, "category": category}

    async def resolve(self, utterance: str, session_id: str) -> Tuple[str, str]:
        """
        解析顺序: 模式注册表 -> 后备解析器 (需通过安全校验) -> 帮助文本

        Returns:
            (query, category)
        """
        entry = self.registry.match(utterance or "")
        if entry is not None:
            self.logger.info(f"Matched pattern '{entry.phrase}' -> {entry.category}")
            return entry.template, entry.category

        if self.fallback_resolver is not None:
            generated = await self._resolve_with_fallback(utterance, session_id)
            if generated:
                return generated, QueryCategory.FREEFORM.value

        self.logger.info(f"No pattern matched, returning help text for: '{utterance}'")
        return HELP_QUERY, QueryCategory.UNKNOWN.value

    async def _resolve_with_fallback(self, utterance: str, session_id: str) -> Optional[str]:
        context_text = self.session_store.context_text(session_id, self.context_turns)
        try:
            raw = await self.fallback_resolver.resolve(utterance, context_text, SCHEMA_DESCRIPTION)
        except Exception as e:
            self.logger.error(f"Fallback resolver failed: {e}")
            self.logger.debug(traceback.format_exc())
            return None

        if not raw:
            return None

        sql = QueryValidator.clean_generated_query(raw)
        is_valid, validation = QueryValidator.validate_query(sql, schema=self.schema_name)
        if not is_valid:
            reasons = "; ".join(err["message"] for err in validation["errors"])
            self.logger.warning(f"SECURITY: rejected generated query ({reasons}): {sql[:200]}")
            return None

        self.logger.info(f"Using generated query: {sql[:200]}")
        return sql
