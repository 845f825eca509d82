import os
from dataclasses import dataclass
from pathlib import Path
from typing import List


def _split_csv_env(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./datahall.db")
    cors_origins_raw: str = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    jwt_secret_key: str = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    jwt_expire_minutes: int = int(os.getenv("JWT_EXPIRE_MINUTES", "120"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    storage_provider: str = os.getenv("STORAGE_PROVIDER", "local")
    upload_dir: str = os.getenv("UPLOAD_DIR", "./uploads")
    public_base_url: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
    s3_bucket: str = os.getenv("S3_BUCKET", "datahall-documents")
    s3_endpoint_url: str = os.getenv("S3_ENDPOINT_URL", "")
    s3_region: str = os.getenv("S3_REGION", "us-east-1")
    s3_access_key_id: str = os.getenv("S3_ACCESS_KEY_ID", "")
    s3_secret_access_key: str = os.getenv("S3_SECRET_ACCESS_KEY", "")
    storage_timeout_seconds: float = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "10"))

    signed_url_ttl_seconds: int = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))
    # 0 keeps links without an expiration unless the creator sets one.
    default_link_ttl_seconds: int = int(os.getenv("DEFAULT_LINK_TTL_SECONDS", "0"))

    max_file_size_mb: float = float(os.getenv("MAX_FILE_SIZE_MB", "25"))
    allowed_file_types_raw: str = os.getenv(
        "ALLOWED_FILE_TYPES",
        "application/pdf,text/plain,text/csv,image/png,image/jpeg",
    )

    cron_secret: str = os.getenv("CRON_SECRET", "")
    analytics_retention_days: int = int(os.getenv("ANALYTICS_RETENTION_DAYS", "365"))
    seed_demo_data: bool = _env_flag("SEED_DEMO_DATA")

    @property
    def cors_origins(self) -> List[str]:
        origins = _split_csv_env(self.cors_origins_raw)
        if "http://localhost:3000" in origins:
            for local_alt in ("http://127.0.0.1:3000", "http://0.0.0.0:3000"):
                if local_alt not in origins:
                    origins.append(local_alt)
        return origins

    @property
    def allowed_file_types(self) -> List[str]:
        return _split_csv_env(self.allowed_file_types_raw)

    @property
    def max_file_size_bytes(self) -> int:
        return int(self.max_file_size_mb * 1024 * 1024)

    @property
    def upload_path(self) -> Path:
        return Path(self.upload_dir).resolve()


settings = Settings()
