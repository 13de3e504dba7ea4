"""
Configuration management using .env file
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from .env file"""
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Upstage API
    upstage_api_key: str = ""
    chat_model: str = "solar-pro"
    llm_timeout: int = 30
    embedding_provider: str = "local"  # local | upstage | auto
    local_embedding_dim: int = 1024

    # LangSmith
    langsmith_api_key: str = ""
    langsmith_project: str = "source-study-assistant"
    langsmith_tracing: bool = True

    # Redis Record Store
    redis_url: str = ""  # Example: "redis://localhost:6379/0"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = ""
    redis_db: int = 0
    redis_ssl: bool = False
    record_ttl: int = 0  # 0 = records never expire
    use_redis_store: bool = False  # True for production, False for development

    # Application
    environment: str = "development"
    debug: bool = True
    log_dir: str = "logs"

    # CORS
    cors_origins: list = ["http://localhost:5173", "http://localhost:3000"]

    # Vector Database
    vector_db_dir: str = "backend/vectorstore"
    collection_name: str = "source_chunks"
    retrieval_top_k: int = 5
    chunk_size: int = 1000
    chunk_overlap: int = 200


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
