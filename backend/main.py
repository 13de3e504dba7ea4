"""
FastAPI main application
"""
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from backend.config import get_settings
from backend.api import routes
from backend.utils.logger import setup_logging, get_logger

# 로깅 설정
settings = get_settings()
setup_logging(environment=settings.environment, log_dir=settings.log_dir, app_name="source_study")
logger = get_logger(__name__)

# LangSmith 트레이싱 설정
# @traceable 데코레이터는 LANGSMITH_API_KEY를 참조하므로 두 변수 모두 설정
if settings.langsmith_tracing and settings.langsmith_api_key:
    os.environ["LANGCHAIN_TRACING_V2"] = "true"
    os.environ["LANGCHAIN_API_KEY"] = settings.langsmith_api_key
    os.environ["LANGCHAIN_PROJECT"] = settings.langsmith_project
    os.environ["LANGSMITH_API_KEY"] = settings.langsmith_api_key
    os.environ["LANGSMITH_TRACING"] = "true"
    os.environ["LANGSMITH_PROJECT"] = settings.langsmith_project
else:
    os.environ["LANGCHAIN_TRACING_V2"] = "false"
    os.environ["LANGSMITH_TRACING"] = "false"

app = FastAPI(
    title="Source Study Assistant",
    description="Source-grounded chat and quiz generation API",
    version="1.0.0",
    debug=settings.debug
)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 라우터 등록
app.include_router(routes.router, prefix="/api")


@app.on_event("startup")
async def startup_event():
    """서버 시작 로그 (벡터 DB와 LLM 게이트웨이는 첫 요청 시 생성됨)"""
    logger.info("Source Study Assistant API starting (environment=%s)", settings.environment)
    if not settings.upstage_api_key:
        logger.warning("UPSTAGE_API_KEY is not set. LLM calls will fail.")
    if settings.use_redis_store:
        logger.info("Records are stored in Redis")
    else:
        logger.info("Records are kept in memory and are lost on restart")


@app.get("/")
async def root():
    """Health check endpoint"""
    return {
        "status": "ok",
        "message": "Source Study Assistant API",
        "environment": settings.environment
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "backend.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
