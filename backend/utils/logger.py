"""
Logging Configuration for Source Study Assistant

Features:
- 날짜별 자동 로테이션 (매일 자정에 새 파일 생성)
- 에러 로그는 크기 기반 로테이션 (10MB, 최대 5개 백업 파일)
- 레벨별 파일 분리:
  - logs/{app_name}.log: 모든 로그 (INFO 이상)
  - logs/{app_name}_error.log: 에러만 (ERROR 이상)
  - logs/{app_name}_debug.log: 디버그 포함 (개발 환경만)
- test 환경에서는 파일 핸들러 없이 콘솔만 사용

Usage:
    from backend.utils.logger import setup_logging, get_logger

    # 앱 시작 시 한 번만 호출
    setup_logging(environment="development")

    logger = get_logger(__name__)
    logger.info("Hello %s", "World")
"""
import logging
import logging.handlers
from pathlib import Path

NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "httpx",
    "httpcore",
    "urllib3",
    "openai",
    "openai._base_client",
    "langsmith",
    "posthog",
    "chromadb",
)

LOG_LEVELS = {
    "development": logging.DEBUG,
    "test": logging.WARNING,
    "production": logging.INFO,
}


def setup_logging(
    environment: str = "development",
    log_dir: str = "logs",
    app_name: str = "source_study"
) -> None:
    """
    로깅 시스템 초기화

    Args:
        environment: 환경 ("development" | "production" | "test")
        log_dir: 로그 파일 저장 디렉토리
        app_name: 애플리케이션 이름 (로그 파일명에 사용)
    """
    log_level = LOG_LEVELS.get(environment, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # 기존 핸들러 제거 (중복 방지)
    root_logger.handlers.clear()

    detailed_formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )
    simple_formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # 1. 콘솔 핸들러
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(simple_formatter)
    root_logger.addHandler(console_handler)

    if environment != "test":
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        # 2. 전체 로그 파일 (매일 자정 로테이션, 30일 보관)
        app_file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_path / f"{app_name}.log",
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8"
        )
        app_file_handler.setLevel(logging.INFO)
        app_file_handler.setFormatter(detailed_formatter)
        app_file_handler.suffix = "%Y-%m-%d"
        root_logger.addHandler(app_file_handler)

        # 3. 에러 전용 파일 (크기 기반 로테이션)
        error_file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path / f"{app_name}_error.log",
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8"
        )
        error_file_handler.setLevel(logging.ERROR)
        error_file_handler.setFormatter(detailed_formatter)
        root_logger.addHandler(error_file_handler)

        # 4. 디버그 로그 파일 (개발 환경만)
        if environment == "development":
            debug_file_handler = logging.handlers.RotatingFileHandler(
                filename=log_path / f"{app_name}_debug.log",
                maxBytes=10 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8"
            )
            debug_file_handler.setLevel(logging.DEBUG)
            debug_file_handler.setFormatter(detailed_formatter)
            root_logger.addHandler(debug_file_handler)

    # 5. 외부 라이브러리 로그 레벨 조정 (노이즈 감소)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized: environment=%s, level=%s, dir=%s",
        environment,
        logging.getLevelName(log_level),
        log_dir,
    )


def get_logger(name: str) -> logging.Logger:
    """
    로거 인스턴스 가져오기

    Args:
        name: 로거 이름 (보통 __name__ 사용)
    """
    return logging.getLogger(name)
