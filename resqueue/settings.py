from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "resqueue"

    # Store
    STORE_BACKEND: Literal["redis", "memory"] = "redis"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_NAMESPACE: str = "resque:"

    # Worker loop
    WORKER_QUEUES: str = "*"
    WORKER_INTERVAL: float = 5.0
    WORKER_BLOCKING: bool = False
    WORKER_COUNT: int = 1
    PIDFILE: Optional[str] = None
    # Module imported at worker start; its setup(ctx) registers handlers and listeners
    APP_MODULE: Optional[str] = None

    # Execution strategy
    JOB_STRATEGY: Optional[Literal["inprocess", "fork", "fastcgi"]] = None
    FASTCGI_LOCATION: str = "127.0.0.1:9000"
    # SCRIPT_FILENAME sent to the gateway; defaults to resqueue_worker/fastcgi_worker.py
    FASTCGI_SCRIPT: Optional[str] = None
    FASTCGI_TIMEOUT_SECONDS: float = 30.0
    FASTCGI_RETRIES: int = 2

    # Bookkeeping
    FAILURE_BACKEND: Literal["redis", "log"] = "redis"
    FAILED_QUEUE_MAX_LENGTH: Optional[int] = None
    STATUS_TTL_SECONDS: int = 86400
    # An empty blocking pop faster than this share of the timeout is a broken store
    BLPOP_MIN_ELAPSED_RATIO: float = 0.10

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="RESQUEUE_", env_file=".env", extra="ignore")


settings = Settings()
