import re
import traceback
from typing import Dict, Any, Iterable, List, Optional

from .base_agent import BaseAgent
from ..models.patterns import QueryCategory
from ..models.session import Turn, TurnRole

CONTEXTUAL_CUES = (
    "more about", "tell me more", "show more", "what about",
    "for that", "details on", "how about", "and the",
)

PRONOUNS = ("that", "those", "this", "these", "it", "them", "its", "their")

EXCEPTION_TYPES = ("LATE_IN", "EARLY_OUT", "MISSED_PUNCH", "OVERTIME", "ABSENCE")

ENTITY_KINDS = ("tenant", "location", "colleague", "exception")

# "tenant"/"location" 后面跟着这些词时不算实体名
GENERIC_TOKENS = {
    "a", "an", "and", "are", "by", "count", "counts", "data", "detail", "details",
    "distribution", "for", "in", "info", "information", "is", "list", "of", "on",
    "or", "overview", "pattern", "patterns", "report", "status", "summary", "that",
    "the", "this", "with",
}

_PRONOUN_RE = re.compile(r"\b(" + "|".join(PRONOUNS) + r")\b", re.IGNORECASE)
_PRONOUN_PHRASE_RE = re.compile(
    r"\b(?:" + "|".join(PRONOUNS) + r")\s+(tenants?|locations?|exceptions?|colleagues?)\b",
    re.IGNORECASE
)
_NAMED_ENTITY_RE = {
    "tenant": re.compile(r"\b(Tenant_\w+)", re.IGNORECASE),
    "location": re.compile(r"\b(Location_\w+)", re.IGNORECASE),
    "exception": re.compile(r"\b(" + "|".join(EXCEPTION_TYPES) + r")\b", re.IGNORECASE),
}
_KEYWORD_ENTITY_RE = {
    "tenant": re.compile(r"\btenant\s+(\w+)", re.IGNORECASE),
    "location": re.compile(r"\blocation\s+(\w+)", re.IGNORECASE),
}

SIMILARITY_THRESHOLD = 0.7


def _kinds_mentioned(utterance: str) -> List[str]:
    lowered = utterance.lower()
    return [kind for kind in ENTITY_KINDS if kind in lowered]


def _extract_from_text(text: str, kind: str) -> Optional[str]:
    """从用户原话中提取某类实体名"""
    if not text:
        return None
    named = _NAMED_ENTITY_RE.get(kind)
    if named:
        match = named.search(text)
        if match:
            value = match.group(1)
            return value.upper() if kind == "exception" else value
    keyword = _KEYWORD_ENTITY_RE.get(kind)
    if keyword:
        for match in keyword.finditer(text):
            token = match.group(1)
            if token.lower() not in GENERIC_TOKENS:
                return match.group(0)
    return None


def _has_entities(turn: Turn) -> bool:
    """有结果行的助手轮次；帮助文本的单行结果不算"""
    return (turn.role == TurnRole.ASSISTANT
            and (turn.row_count or 0) > 0
            and turn.category != QueryCategory.UNKNOWN.value)


def word_similarity(first: str, second: str) -> float:
    """按词重叠计算两个短句的相似度 (0~1)"""
    words1 = first.lower().split()
    words2 = second.lower().split()
    if not words1 or not words2:
        return 0.0
    matches = 0
    for word1 in words1:
        for word2 in words2:
            if word1 == word2 or (len(word1) > 3 and word1 in word2):
                matches += 1
                break
    return matches / max(len(words1), len(words2))


class ContextResolutionAgent(BaseAgent):
    """
    上下文解析智能体 - 借助最近的会话轮次改写用户语句

    规则按顺序尝试，第一个产生改写的规则生效:
    1. 上下文短语扩展: 语句含 "tell me more" 等提示词时，从最近一个有结果的
       轮次中找出实体并追加 " for <实体>"
    2. 代词替换: "that tenant" / "those exceptions" 替换为最近出现的实体
    """

    required_inputs = ("utterance",)

    def __init__(self):
        super().__init__("ContextResolution")

    async def process(self, input_data: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not await self.validate_input(input_data):
            utterance = input_data.get("utterance", "") if isinstance(input_data, dict) else ""
            return {"original": utterance, "resolved": utterance, "is_follow_up": False}

        utterance = input_data["utterance"]
        history: List[Turn] = input_data.get("history") or []
        resolved = self.resolve(utterance, history)
        return {
            "original": utterance,
            "resolved": resolved,
            "is_follow_up": self.is_follow_up(utterance, history),
        }

    def resolve(self, utterance: str, history: Iterable[Turn]) -> str:
        """返回改写后的语句；无法解析时原样返回"""
        history = list(history)
        if not history or not utterance:
            return utterance
        try:
            lowered = utterance.lower()
            if any(cue in lowered for cue in CONTEXTUAL_CUES):
                expanded = self._expand_contextual_phrase(utterance, history)
                if expanded != utterance:
                    self.logger.info(f"Context expanded: '{utterance}' -> '{expanded}'")
                    return expanded
            if _PRONOUN_RE.search(utterance):
                substituted = self._substitute_pronouns(utterance, history)
                if substituted != utterance:
                    self.logger.info(f"Pronouns resolved: '{utterance}' -> '{substituted}'")
                    return substituted
        except Exception as e:
            self.logger.error(f"Context resolution failed, using original utterance: {e}")
            self.logger.debug(traceback.format_exc())
        return utterance

    def is_follow_up(self, utterance: str, history: Iterable[Turn]) -> bool:
        """判断语句是否是对上一轮的追问"""
        history = list(history)
        if not history:
            return False
        lowered = utterance.lower()
        if any(cue in lowered for cue in CONTEXTUAL_CUES) or _PRONOUN_RE.search(utterance):
            return True
        for turn in reversed(history):
            if turn.role == TurnRole.ASSISTANT:
                return any(word_similarity(utterance, suggestion) > SIMILARITY_THRESHOLD
                           for suggestion in turn.follow_ups)
        return False

    def _expand_contextual_phrase(self, utterance: str, history: List[Turn]) -> str:
        source = next((turn for turn in reversed(history) if _has_entities(turn)), None)
        if source is None:
            return utterance

        mentioned = _kinds_mentioned(utterance)
        preferred = mentioned + [kind for kind in ENTITY_KINDS if kind not in mentioned]

        entity = None
        # 先从上一轮的用户原话中找 (tenant / location)
        for kind in [k for k in preferred if k in _KEYWORD_ENTITY_RE]:
            entity = _extract_from_text(source.utterance or "", kind)
            if entity:
                break
        # 原话中没有实体时，使用结果首行记录下来的实体
        if entity is None:
            for kind in preferred:
                if source.entities.get(kind):
                    entity = source.entities[kind]
                    break

        if not entity or entity.lower() in utterance.lower():
            return utterance
        return f"{utterance} for {entity}"

    def _latest_entity(self, kind: str, history: List[Turn]) -> Optional[str]:
        for turn in reversed(history):
            if turn.role != TurnRole.ASSISTANT or turn.category == QueryCategory.UNKNOWN.value:
                continue
            entity = _extract_from_text(turn.utterance or "", kind)
            if entity:
                return entity
            if turn.entities.get(kind):
                return turn.entities[kind]
        return None

    def _substitute_pronouns(self, utterance: str, history: List[Turn]) -> str:
        def replace(match: "re.Match") -> str:
            noun = match.group(1)
            kind = noun.lower().rstrip("s")
            entity = self._latest_entity(kind, history)
            if not entity or entity.lower() in utterance.lower():
                return match.group(0)
            if kind == "exception":
                return f"{entity} {noun}"
            return entity

        return _PRONOUN_PHRASE_RE.sub(replace, utterance)
