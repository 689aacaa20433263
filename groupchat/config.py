from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="allow"  # Allow extra fields from .env
    )

    # Application
    APP_NAME: str = "Group Chat Core"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # API
    API_PREFIX: str = "/api"
    HOST: str = "0.0.0.0"
    PORT: int = 5000

    # Message store backend: "mongo" (durable) or "memory" (single process, tests/dev)
    MESSAGE_STORE_BACKEND: str = "mongo"

    # MongoDB
    MONGODB_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "groupchat_db"

    # Redis (optional - for caching group lookups)
    REDIS_URL: str = ""  # Example: "redis://localhost:6379/0"

    # ========== Authentication (HS256 - Shared Secret) ==========
    # Tokens are issued by the auth collaborator; we only verify them
    JWT_SECRET_KEY: str = "dev_secret_key_change_in_production_min_32_chars_required"
    JWT_ALGORITHM: str = "HS256"

    # ========== Group Collaborator ==========
    GROUPS_API_URL: str = "http://groups-api:8000"
    GROUPS_API_TIMEOUT: float = 3.0
    SERVICE_AUTH_TOKEN: str = "your-service-token-change-in-production"
    GROUP_CACHE_TTL: int = 300  # 5 minutes for group details

    # ========== Pagination ==========
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    # ========== Real-time Channel ==========
    REALTIME_MAX_QUEUE: int = 1000          # Outbound events buffered per connection
    REALTIME_AUTHORIZE_JOIN: bool = False   # Membership check on joinGroup (off = advisory rooms)
    REALTIME_LEGACY_CHAT_EVENT: bool = True  # Also emit "chat message" alongside "newMessage"

    # ========== Rate Limits ==========
    RATE_LIMIT_DEFAULT: str = "100/minute"
    RATE_LIMIT_CREATE: str = "20/minute"
    RATE_LIMIT_MUTATE: str = "30/minute"

    # Logging
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5000"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: List[str] = ["*"]
    CORS_ALLOW_HEADERS: List[str] = ["*"]

    # API Documentation (Swagger UI / OpenAPI)
    ENABLE_DOCS: bool = True
    PROJECT_NAME: str = "Group Messaging - Real-time Chat Core"
    API_VERSION: str = "1.0.0"


settings = Settings()
