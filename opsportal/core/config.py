# opsportal/core/config.py

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


#
# =====================================================
#                    SETTINGS CLASS
# =====================================================
#


class Settings(BaseSettings):
    """
    Application Settings
    """

    model_config = SettingsConfigDict(
        env_file=".env", extra="ignore", case_sensitive=False
    )

    environment: str = "development"

    # Database
    database_url: str = "sqlite:///./opsportal.db"
    db_echo: bool = False

    # Redis base fields (for .env / local)
    redis_host: str = "localhost"
    redis_port: str = "6379"
    redis_username: Optional[str] = None
    redis_password: Optional[str] = None

    # Artifact storage: "local" keeps files on disk, "s3" uploads to the bucket
    artifact_storage: str = "local"
    export_output_dir: str = "/tmp/exports"
    s3_bucket_name: Optional[str] = None
    aws_region: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    export_presigned_url_expiry: int = 3600

    # Export pipeline tuning
    # CSV requests above this many rows are streamed instead of buffered
    export_buffer_threshold: int = 5000
    # Document (PDF) exports are refused above this many rows
    export_document_row_ceiling: int = 2000
    # Background jobs render documents off the request path and may go larger
    export_job_document_row_ceiling: int = 20000
    export_document_font_size: float = 9.0
    export_document_min_font_size: float = 6.0
    # Background jobs at or below this many rows finish inside the enqueue call
    export_inline_row_limit: int = 0
    export_worker_pool_size: int = 4
    # Hard limit for one job; PROCESSING jobs older than this are failed by the sweep
    export_job_time_limit: int = 60 * 60
    export_stream_batch_size: int = 500
    export_queue_name: str = "exports"
    # Responses smaller than this are sent uncompressed even when gzip is accepted
    export_gzip_minimum_size: int = 500

    # Analytics
    analytics_max_days: int = 90
    analytics_top_days: int = 5

    # Logging configuration
    log_level: str = "INFO"
    log_json: bool = False

    #
    # ---------------------------
    #  REDIS / CELERY URLS
    # ---------------------------
    #
    @property
    def redis_url(self) -> str:
        """Construct the Redis URL."""
        if self.redis_username and self.redis_password:
            return (
                f"redis://{self.redis_username}:{self.redis_password}"
                f"@{self.redis_host}:{self.redis_port}"
            )
        elif self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}"

    @property
    def celery_broker(self) -> str:
        """Construct the Redis URL for Celery broker (DB 1)."""
        return f"{self.redis_url}/1"

    @property
    def celery_backend(self) -> str:
        """Construct the Redis URL for Celery backend (DB 2)."""
        return f"{self.redis_url}/2"


#
# Instantiate settings
#
settings = Settings()
