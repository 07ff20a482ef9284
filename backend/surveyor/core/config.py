from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    APP_NAME: str = "RSU Surveyor Sync"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # App shell webview origins
    CORS_ORIGINS: List[str] = ["*"]

    # Local durable store
    DATABASE_URL: str = "sqlite:///./rsu_surveyor.db"
    STORAGE_NAMESPACE: str = "rsu"

    # Remote registry backend
    API_BASE_URL: str = "http://localhost:8000/api/v1"
    API_TOKEN: Optional[str] = None
    REQUEST_TIMEOUT: float = 15.0
    UPLOAD_TIMEOUT: float = 60.0  # Document uploads are large on 2G/3G links

    # Sync queue
    SYNC_INTERVAL_SECONDS: float = 30.0
    SYNC_AUTO_START: bool = True
    SYNC_MAX_ATTEMPTS: Optional[int] = None  # None = retry forever
    SYNC_DEAD_LETTER_ON_REJECTION: bool = False

    # Scoring
    PERSIST_WEIGHTING_PROFILE: bool = True

    class Config:
        env_file = ".env"


settings = Settings()
