from functools import lru_cache
from typing import Optional, Any
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Todo API"
    APP_ENV: str = "production"

    BACKEND_CORS_ORIGINS: str = "*"  # comma-separated list

    DATABASE_URL: str = "sqlite:///./todo.db"

    JWT_SECRET_KEY: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 7

    # OTP
    OTP_MIN: int = 100000
    OTP_MAX: int = 999999
    OTP_LENGTH: int = 6
    OTP_TTL_MINUTES: int = 10
    PASSWORD_MIN_LENGTH: int = 6

    # Todos
    TODOS_PER_PAGE: int = 15
    TODOS_MAX_PER_PAGE: int = 100

    # PDF attachments
    PDF_MAX_BYTES: int = 20 * 1024 * 1024
    PDF_MAX_FILES: int = 10
    PDF_MIME_TYPE: str = "application/pdf"
    PDF_STORAGE_PREFIX: str = "pdfs"

    # Storage: "local" or "s3"
    STORAGE_BACKEND: str = "local"
    STORAGE_LOCAL_ROOT: str = "./storage"

    # S3 Configuration - поддерживаем оба варианта имен (старые и новые)
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None
    AWS_S3_BUCKET_NAME: Optional[str] = None
    AWS_S3_REGION: str = "us-east-1"
    AWS_S3_ENDPOINT_URL: Optional[str] = None

    # SMTP
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_FROM: Optional[str] = None
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    RESEND_API_KEY: Optional[str] = None
    RESEND_FROM: Optional[str] = None
    # Dev only: write the message to the log and report it as delivered
    EMAIL_LOG_ONLY: bool = False

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Игнорируем лишние поля в .env
    )

    @model_validator(mode="before")
    @classmethod
    def map_env_names(cls, data: Any) -> Any:
        """Маппинг имен переменных из .env на внутренние имена"""
        if isinstance(data, dict):
            result = dict(data)

            # Маппинг: имя_в_env -> внутреннее_имя
            mappings = [
                ("AWS_ACCESS_KEY", "AWS_ACCESS_KEY_ID"),
                ("AWS_SECRET_KEY", "AWS_SECRET_ACCESS_KEY"),
                ("AWS_BUCKET_NAME", "AWS_S3_BUCKET_NAME"),
                ("REGION", "AWS_S3_REGION"),
            ]

            for env_name, internal_name in mappings:
                for key in [env_name, env_name.lower()]:
                    if key in data and internal_name not in result:
                        result[internal_name] = data[key]
                        break

            return result

        return data

    @model_validator(mode="after")
    def validate_required_fields(self):
        """Проверка обязательных полей после маппинга"""
        if self.STORAGE_BACKEND not in ("local", "s3"):
            raise ValueError("STORAGE_BACKEND must be 'local' or 's3'")
        if self.OTP_MIN > self.OTP_MAX:
            raise ValueError("OTP_MIN must not exceed OTP_MAX")
        if len(str(self.OTP_MAX)) != self.OTP_LENGTH or len(str(self.OTP_MIN)) != self.OTP_LENGTH:
            raise ValueError("OTP_MIN and OTP_MAX must both have OTP_LENGTH digits")

        if self.STORAGE_BACKEND == "s3":
            if not self.AWS_ACCESS_KEY_ID:
                raise ValueError("AWS_ACCESS_KEY_ID (или aws_access_key) обязателен")
            if not self.AWS_SECRET_ACCESS_KEY:
                raise ValueError("AWS_SECRET_ACCESS_KEY (или aws_secret_key) обязателен")
            if not self.AWS_S3_BUCKET_NAME:
                raise ValueError("AWS_S3_BUCKET_NAME (или aws_bucket_name) обязателен")

            # Убираем только внешние кавычки и пробелы, содержимое секрета не трогаем
            self.AWS_ACCESS_KEY_ID = self.AWS_ACCESS_KEY_ID.strip().strip('"').strip("'")
            secret = self.AWS_SECRET_ACCESS_KEY.strip()
            if (secret.startswith('"') and secret.endswith('"')) or (secret.startswith("'") and secret.endswith("'")):
                self.AWS_SECRET_ACCESS_KEY = secret[1:-1]
            else:
                self.AWS_SECRET_ACCESS_KEY = secret
            self.AWS_S3_BUCKET_NAME = self.AWS_S3_BUCKET_NAME.strip().strip('"').strip("'")
            self.AWS_S3_REGION = self.AWS_S3_REGION.strip().strip('"').strip("'")

        return self

    @property
    def cors_origins(self) -> list[str]:
        return [
            origin.strip()
            for origin in self.BACKEND_CORS_ORIGINS.split(",")
            if origin.strip()
        ]


@lru_cache
def get_settings() -> Settings:
    return Settings()
