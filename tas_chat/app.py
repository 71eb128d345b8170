from contextlib import asynccontextmanager
import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.chat_routes import router as chat_router
from .api.session_routes import router as session_router
from .config import settings
from .orchestrator.orchestrator import Orchestrator, get_orchestrator

# 配置日志 (Configure logging)
logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.PROJECT_NAME} API...")
    # 启动时创建单例 (注册表、会话存储、执行器)
    get_orchestrator()
    yield
    logger.info(f"Shutting down {settings.PROJECT_NAME} API...")

app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    description="Conversational analytics over the Time and Attendance (TAS) schema",
    version=APP_VERSION,
    lifespan=lifespan
)

# 配置CORS (Configure CORS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册路由 (Register routes)
app.include_router(chat_router, prefix=f"{settings.API_V1_STR}/chat", tags=["Chat"])
app.include_router(session_router, prefix=f"{settings.API_V1_STR}/session", tags=["Session"])

@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.PROJECT_NAME} API",
        "version": APP_VERSION,
        "features": [
            "Pattern-based natural language queries",
            "Conversational context (follow-up questions)",
            "Automatic insights and predictions",
            "Chart-ready data"
        ],
        "docs": "/docs"
    }

@app.get("/health")
async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)):
    database_connected = await orchestrator.check_database()
    return {
        "status": "healthy" if database_connected else "degraded",
        "database_connected": database_connected,
        "service": settings.PROJECT_NAME,
        "version": APP_VERSION
    }

def main():
    import uvicorn
    uvicorn.run("tas_chat.app:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)

if __name__ == "__main__":
    main()
