from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from dotenv import load_dotenv
load_dotenv()


class Settings(BaseSettings):
	# App
	APP_NAME: str = "Relay Dispatch"
	APP_VERSION: str = "1.0.0"
	API_V1_PREFIX: str = "/api/v1"
	DEBUG: bool = False
	ENVIRONMENT: str = "development" # development, staging, production
	LOG_LEVEL: str = "INFO"

	# Database
	DATABASE_URL: str
	DB_POOL_SIZE: int = 20
	DB_MAX_OVERFLOW: int = 40
	DB_POOL_PRE_PING: bool = True
	DB_ECHO: bool = False

	# Redis / Celery
	REDIS_URL: str
	REDIS_POOL_SIZE: int = 10
	CELERY_TASK_TIME_LIMIT: int = 60 * 30

	# Command dispatch
	DISPATCH_MAX_PARALLELISM: int = 4
	DISPATCH_MAX_RETRY_ATTEMPTS: int = 3
	DISPATCH_RETRY_SWEEP_SECONDS: float = 60.0
	DISPATCH_PROCESSING_TIMEOUT_SECONDS: int = 900

	# Outbox
	OUTBOX_BATCH_SIZE: int = 50
	OUTBOX_MAX_ATTEMPTS: int = 5
	OUTBOX_POLL_INTERVAL_SECONDS: float = 15.0
	OUTBOX_PROCESSING_TIMEOUT_SECONDS: int = 300
	OUTBOX_RETENTION_DAYS: int = 30

	# Retry policy
	BACKOFF_BASE_SECONDS: int = 30
	BACKOFF_MAX_DOUBLINGS: int = 8
	ERROR_MESSAGE_MAX_LENGTH: int = 400

	# Email
	EMAIL_ENABLED: bool = True
	EMAIL_NOTIFICATIONS_ENABLED: bool = True
	EMAIL_DELIVERY_MODE: str = "dummy" # dummy, smtp
	EMAIL_FROM_ADDRESS: str = "no-reply@localhost"
	EMAIL_FROM_NAME: str = "Relay"
	SMTP_HOST: str = "localhost"
	SMTP_PORT: int = 587
	SMTP_USERNAME: Optional[str] = None
	SMTP_PASSWORD: Optional[str] = None
	SMTP_USE_TLS: bool = True
	EMAIL_DUMMY_OUTPUT_DIR: str = "emails"
	EMAIL_TEMPLATE_ROOT: str = "templates" # relative paths resolve against relay/notifications
	EMAIL_DEFAULT_CULTURE: str = "en-US"
	INVITATION_BASE_URL: str = "http://localhost:3000/invitations"

	# Monitoring
	EXPOSE_METRICS: bool = True

	model_config = SettingsConfigDict(
		env_file=".env",
		env_file_encoding="utf-8",
		case_sensitive=True
	)


@lru_cache()
def get_settings() -> Settings:
	return Settings()


settings = get_settings()
