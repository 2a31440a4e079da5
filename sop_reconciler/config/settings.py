"""Application settings using Pydantic."""

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageBackend(str, Enum):
    """Where uploaded documents and extracted images are stored."""

    LOCAL = "local"
    BLOB = "blob"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///data/sop_reconciler.db"

    # File storage
    storage_backend: StorageBackend = StorageBackend.LOCAL
    upload_dir: str = "data/uploads"
    upload_base_url: str = "/uploads"
    minio_endpoint: str = "localhost:9000"
    minio_access_key: str = "minioadmin"
    minio_secret_key: str = "minioadmin"
    minio_bucket: str = "sop-documents"
    minio_secure: bool = False

    # Vector search
    vector_search_enabled: bool = True
    vector_store_dir: str = "data/vector_store"
    vector_collection_name: str = "sop_content_blocks"

    # Chunking Configuration
    chunk_max_chars: int = 12000
    chunk_extraction_workers: int = 1

    # Languages
    primary_language: str = "zh"
    secondary_language: str = "en"

    # Conflict detection
    corpus_candidate_limit: int = 10
    related_similarity_threshold: float = 0.3
    duplicate_similarity_threshold: float = 0.8

    # Versioning
    version_increment: str = "0.1"
    initial_version: str = "1.0"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
