from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, List, Optional
from datetime import datetime
from enum import Enum

from .analysis import Insight


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    ERROR = "error"


class Turn(BaseModel):
    """会话中的一个轮次，创建后不可修改"""

    model_config = ConfigDict(frozen=True)

    role: TurnRole
    text: str
    utterance: Optional[str] = None  # 产生该回复的用户原话
    query: Optional[str] = None
    category: Optional[str] = None
    row_count: Optional[int] = None
    insight: Optional[Insight] = None
    entities: Dict[str, str] = Field(default_factory=dict)
    follow_ups: List[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)


class SessionModel(BaseModel):
    """会话概要信息"""

    session_id: str
    created_at: datetime
    last_active: datetime
    turn_count: int = 0
