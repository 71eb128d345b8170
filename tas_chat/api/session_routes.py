from fastapi import APIRouter, HTTPException, Depends

from ..orchestrator.orchestrator import Orchestrator, get_orchestrator

router = APIRouter()

@router.post("/create")
async def create_session(orchestrator: Orchestrator = Depends(get_orchestrator)):
    """创建新的对话会话 (Create a new conversation session)"""
    session_id = await orchestrator.create_session()
    return {"session_id": session_id}

@router.get("/{session_id}")
async def get_session_info(session_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """获取会话信息 (Get session information)"""
    info = orchestrator.get_session_info(session_id)
    if info is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return info
