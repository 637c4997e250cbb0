#!/usr/bin/env python3

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite:///./inkpipe.db"
    redis_url: str = "redis://localhost:6379/0"
    workdir: str = "/tmp/inkpipe"
    log_level: str = "INFO"

    # Inference provider
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"  # Any OpenAI-compatible endpoint
    vision_model: str = "gpt-4o"
    transcription_model: str = "gpt-4o-audio-preview"

    # Object store (S3, R2 or MinIO)
    s3_bucket_name: Optional[str] = None
    s3_endpoint_url: Optional[str] = None  # e.g. https://<account>.r2.cloudflarestorage.com
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_region: str = "auto"  # R2 uses "auto"
    public_base_url: Optional[str] = None  # Public host serving the bucket
    presigned_url_expiry: int = 3600

    # Auth
    auth_enabled: bool = True
    default_user_id: str = "user"  # Owner of every request when auth is disabled
    cron_secret: Optional[str] = None

    # Token budget
    enable_usage_quota: bool = False
    free_tier_tokens: int = 100000

    # Background worker
    worker_batch_size: int = 10
    stale_processing_seconds: int = 0  # 0 = re-claim "processing" rows on every run
    process_pending_interval_minutes: int = 1

    # Audio chunking
    audio_chunk_seconds: int = 20 * 60
    chunk_stagger_seconds: float = 1.0

    class Config:
        env_file = ".env"


settings = Settings()
