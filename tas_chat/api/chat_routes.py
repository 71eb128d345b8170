from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from typing import Optional
import logging
import traceback

from ..orchestrator.orchestrator import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

class ChatRequest(BaseModel):
    """聊天消息请求模型"""
    session_id: Optional[str] = None
    message: str

@router.post("/message")
async def send_message(request: ChatRequest, orchestrator = Depends(get_orchestrator)):
    """发送一条自然语言消息 (Send a chat message)"""
    try:
        if not request.message or not request.message.strip():
            raise HTTPException(status_code=400, detail="Message cannot be empty")

        return await orchestrator.handle_turn(request.session_id, request.message.strip())

    except HTTPException as he:
        raise he
    except Exception as e:
        logger.error(f"Error processing message: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(status_code=500, detail="Error processing message")

@router.get("/history/{session_id}")
async def get_history(session_id: str, orchestrator = Depends(get_orchestrator)):
    """获取会话历史 (Get conversation history)"""
    try:
        messages = orchestrator.get_history(session_id)
        return {
            "session_id": session_id,
            "messages": messages,
            "message_count": len(messages)
        }
    except Exception as e:
        logger.error(f"Error getting history: {str(e)}")
        logger.error(traceback.format_exc())
        raise HTTPException(status_code=500, detail="Error getting history")

@router.delete("/session/{session_id}")
async def clear_session(session_id: str, orchestrator = Depends(get_orchestrator)):
    """清除会话 (Clear a session)"""
    orchestrator.clear_session(session_id)
    return {"message": "Session cleared", "session_id": session_id}

@router.get("/suggestions")
async def get_suggestions(orchestrator = Depends(get_orchestrator)):
    """获取推荐问题 (Get suggested questions)"""
    return {"suggestions": orchestrator.list_suggestions()}

@router.get("/tables")
async def get_tables(orchestrator = Depends(get_orchestrator)):
    """列出可查询的表 (List tables in the TAS schema)"""
    return {"tables": await orchestrator.list_tables()}
