import time
import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional

from ..models.session import SessionModel, Turn, TurnRole

logger = logging.getLogger(__name__)


class _SessionState:
    """单个会话的状态：滑动窗口、时间戳和会话锁放在一起"""

    __slots__ = ("turns", "created_at", "last_active", "last_active_at", "lock")

    def __init__(self, history_size: int, now: float):
        self.turns: Deque[Turn] = deque(maxlen=history_size)
        self.created_at = datetime.now()
        self.last_active = now  # 单调时钟，用于超时判断
        self.last_active_at = self.created_at
        self.lock = threading.Lock()


class SessionStore:
    """
    内存中的会话存储

    - 每个会话保留最近 history_size 个轮次，超出时淘汰最旧的
    - 同一会话的写操作串行执行，不同会话互不阻塞
    - 每次操作前先清理空闲超过 timeout 秒的会话
    """

    def __init__(self, history_size: int = 10, timeout: float = 1800.0,
                 clock: Callable[[], float] = time.monotonic):
        if history_size < 1:
            raise ValueError("history_size must be at least 1")
        self.history_size = history_size
        self.timeout = timeout
        self._clock = clock
        self._sessions: Dict[str, _SessionState] = {}
        self._lock = threading.Lock()  # 只保护会话字典本身

    def _evict_expired(self) -> None:
        now = self._clock()
        with self._lock:
            expired = [sid for sid, state in self._sessions.items()
                       if now - state.last_active > self.timeout]
            for sid in expired:
                del self._sessions[sid]
        for sid in expired:
            logger.info(f"Removed expired session: {sid}")

    def _get_state(self, session_id: str) -> Optional[_SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def _update(self, session_id: str, turn: Optional[Turn]) -> None:
        self._evict_expired()
        while True:
            with self._lock:
                state = self._sessions.get(session_id)
                if state is None:
                    state = _SessionState(self.history_size, self._clock())
                    self._sessions[session_id] = state
                    logger.info(f"Created session: {session_id}")
            with state.lock:
                # 拿到会话锁之前会话可能已被清除，此时重新创建；
                # 写入期间持有字典锁，清理线程无法在检查之后删除该会话
                with self._lock:
                    if self._sessions.get(session_id) is not state:
                        continue
                    if turn is not None:
                        state.turns.append(turn)  # deque(maxlen) 自动淘汰最旧轮次
                    state.last_active = self._clock()
                    state.last_active_at = datetime.now()
                return

    def append(self, session_id: str, turn: Turn) -> None:
        """追加一个轮次并刷新最后活动时间"""
        self._update(session_id, turn)

    def touch(self, session_id: str) -> None:
        """创建空会话 (已存在时只刷新最后活动时间)"""
        self._update(session_id, None)

    def history(self, session_id: str) -> List[Turn]:
        """返回会话历史的副本 (从旧到新)，未知会话返回空列表"""
        self._evict_expired()
        state = self._get_state(session_id)
        if state is None:
            return []
        with state.lock:
            return list(state.turns)

    def clear(self, session_id: str) -> None:
        self._evict_expired()
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info(f"Cleared session: {session_id}")

    def context_text(self, session_id: str, limit: Optional[int] = None) -> str:
        """
        将最近的轮次渲染为上下文文本

        Args:
            session_id: 会话ID
            limit: 取最近多少个轮次，None表示全部

        Returns:
            "User: ..." / "Assistant generated query: ..." 交替的多行文本
        """
        turns = self.history(session_id)
        if limit is not None:
            turns = turns[-limit:] if limit > 0 else []

        lines = []
        for turn in turns:
            if turn.role == TurnRole.USER:
                lines.append(f"User: {turn.text}")
            elif turn.query:
                lines.append(f"Assistant generated query: {turn.query}")
        return "\n".join(lines)

    def session_info(self, session_id: str) -> Optional[SessionModel]:
        self._evict_expired()
        state = self._get_state(session_id)
        if state is None:
            return None
        with state.lock:
            return SessionModel(
                session_id=session_id,
                created_at=state.created_at,
                last_active=state.last_active_at,
                turn_count=len(state.turns)
            )

    def session_count(self) -> int:
        self._evict_expired()
        with self._lock:
            return len(self._sessions)
