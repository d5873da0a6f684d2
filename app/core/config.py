"""Application configuration using Pydantic Settings."""

import re
import tempfile
from pathlib import Path
from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import BaseSettings
from typing import Dict, List, Optional
import os


# S3 rejects multipart parts smaller than 5 MiB (except the last one)
MIN_PART_SIZE_MB = 5
MAX_PART_SIZE_MB = 5120

_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class FolderRule(BaseModel):
    """Upload limits for one folder.

    Example:
        max_size_mb=5 caps profile pictures at 5 MB, and
        extensions=[".txt", ".md"] limits transcripts to text files.
        Unset fields fall back to MAX_UPLOAD_SIZE_MB and any extension.
    """
    max_size_mb: Optional[int] = None
    extensions: List[str] = []

    @field_validator('max_size_mb')
    @classmethod
    def validate_max_size(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError(f"max_size_mb must be at least 1, got {v}")
        return v

    @field_validator('extensions')
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Service Identity
    SERVICE_NAME: str = "media-storage-api"
    VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Logging Configuration
    LOG_LEVEL: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    LOG_JSON: bool = True    # JSON logs (prod) vs pretty console (dev)
    DEBUG: bool = False      # Enable debug mode features

    # Object store connection profile (MinIO or any S3-compatible service)
    MINIO_ENDPOINT: str = "localhost"
    MINIO_PORT: int = 9000
    MINIO_USE_SSL: bool = False
    MINIO_ACCESS_KEY: str = "minioadmin"
    MINIO_SECRET_KEY: str = "minioadmin"
    MINIO_REGION: str = "us-east-1"
    MINIO_BUCKET_NAME: str = "luz-ia"
    MINIO_PATH_STYLE: bool = True
    # When set, generated URLs point here instead of the proxy route
    MINIO_PUBLIC_URL: Optional[str] = None

    # Upload strategy
    STORAGE_CHUNK_SIZE_MB: int = 10
    UPLOAD_MAX_RETRIES: int = 3
    UPLOAD_CHUNK_SIZES_MB: List[int] = [10, 5, 16]
    UPLOAD_RETRY_BACKOFF_SECONDS: float = 0.0
    UPLOAD_BUFFER_THRESHOLD_KB: int = 1024  # Smaller uploads stay in memory
    MAX_UPLOAD_SIZE_MB: int = 25
    UPLOAD_FOLDERS: List[str] = [
        "perfil",
        "praticas",
        "manifestacoes",
        "contents",
        "transcricoes",
        "materiais",
        "documentos",
        "outros",
    ]
    UPLOAD_FOLDER_RULES: Dict[str, FolderRule] = {
        "perfil": FolderRule(max_size_mb=5),
        "manifestacoes": FolderRule(max_size_mb=10),
        "praticas": FolderRule(max_size_mb=25),
        "transcricoes": FolderRule(extensions=[".txt", ".md"]),
    }

    # Local staging for uploads and proxied downloads
    STAGING_DIR: str = os.path.join(tempfile.gettempdir(), "media-staging")
    PROXY_PLACEHOLDER_PATH: Optional[str] = str(_PROJECT_ROOT / "public" / "placeholder.png")

    # Presigned URL lifetimes
    PRESIGNED_URL_TTL_SECONDS: int = 24 * 60 * 60
    AUDIO_URL_TTL_SECONDS: int = 2 * 60 * 60

    # Bucket lifecycle
    STORAGE_INIT_ON_STARTUP: bool = True
    PUBLIC_POLICY_PREFIX: str = "public/"
    SELF_TEST_PREFIX: str = "_test_/"

    @field_validator('MINIO_BUCKET_NAME')
    @classmethod
    def validate_bucket_name(cls, v: str) -> str:
        """Validate bucket name follows S3 naming conventions.

        Rules:
        - 3-63 characters long
        - Lowercase letters, numbers, hyphens, and dots only
        - Must start and end with a letter or number
        - No consecutive dots
        - Not formatted as an IP address
        """
        if not 3 <= len(v) <= 63:
            raise ValueError(f"Bucket name must be 3-63 characters long, got {len(v)}")

        if not re.match(r'^[a-z0-9][a-z0-9.-]*[a-z0-9]$', v):
            raise ValueError(
                f"Bucket name '{v}' must start/end with letter or number, "
                "and contain only lowercase letters, numbers, hyphens, and dots"
            )

        if '..' in v:
            raise ValueError("Bucket name cannot contain consecutive dots")

        if re.match(r'^\d+\.\d+\.\d+\.\d+$', v):
            raise ValueError("Bucket name cannot be formatted as an IP address")

        return v

    @field_validator('MINIO_PUBLIC_URL')
    @classmethod
    def validate_public_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate public base URL format if provided."""
        if v is None or v == "":
            return None

        if not re.match(r'^https?://.+', v):
            raise ValueError(
                f"MINIO_PUBLIC_URL must start with http:// or https://, got '{v}'"
            )

        return v.rstrip('/')

    @field_validator('UPLOAD_CHUNK_SIZES_MB')
    @classmethod
    def validate_chunk_sizes(cls, v: List[int]) -> List[int]:
        """Ensure every candidate part size is accepted by S3."""
        if not v:
            raise ValueError("UPLOAD_CHUNK_SIZES_MB must contain at least one size")
        for size in v:
            if not MIN_PART_SIZE_MB <= size <= MAX_PART_SIZE_MB:
                raise ValueError(
                    f"Chunk size must be between {MIN_PART_SIZE_MB} and "
                    f"{MAX_PART_SIZE_MB} MB, got {size}"
                )
        return v

    @field_validator('STORAGE_CHUNK_SIZE_MB')
    @classmethod
    def validate_default_chunk_size(cls, v: int) -> int:
        if not MIN_PART_SIZE_MB <= v <= MAX_PART_SIZE_MB:
            raise ValueError(
                f"Chunk size must be between {MIN_PART_SIZE_MB} and "
                f"{MAX_PART_SIZE_MB} MB, got {v}"
            )
        return v

    @field_validator('UPLOAD_MAX_RETRIES')
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"UPLOAD_MAX_RETRIES must be at least 1, got {v}")
        return v

    @model_validator(mode='after')
    def validate_folder_rules(self):
        """Rules must name known folders and stay within the global limit."""
        for folder, rule in self.UPLOAD_FOLDER_RULES.items():
            if folder not in self.UPLOAD_FOLDERS:
                raise ValueError(f"UPLOAD_FOLDER_RULES names unknown folder '{folder}'")
            if rule.max_size_mb is not None and rule.max_size_mb > self.MAX_UPLOAD_SIZE_MB:
                raise ValueError(
                    f"Limit for '{folder}' ({rule.max_size_mb} MB) exceeds "
                    f"MAX_UPLOAD_SIZE_MB ({self.MAX_UPLOAD_SIZE_MB} MB)"
                )
        return self

    @model_validator(mode='after')
    def validate_presigned_ttls(self):
        """Presigned URLs are limited to 7 days by S3 SigV4."""
        for name in ("PRESIGNED_URL_TTL_SECONDS", "AUDIO_URL_TTL_SECONDS"):
            value = getattr(self, name)
            if not 1 <= value <= 604800:
                raise ValueError(f"{name} must be between 1 and 604800 seconds, got {value}")
        return self

    @property
    def endpoint_url(self) -> str:
        """Full endpoint URL derived from host, port and TLS flag."""
        scheme = "https" if self.MINIO_USE_SSL else "http"
        return f"{scheme}://{self.MINIO_ENDPOINT}:{self.MINIO_PORT}"

    @property
    def retry_policy(self):
        """Upload retry policy built from the configured chunk size ladder."""
        from app.storage.retry import RetryPolicy, MIB

        return RetryPolicy(
            max_attempts=self.UPLOAD_MAX_RETRIES,
            chunk_sizes=tuple(size * MIB for size in self.UPLOAD_CHUNK_SIZES_MB),
            backoff_seconds=self.UPLOAD_RETRY_BACKOFF_SECONDS,
        )

    def folder_rule(self, folder: str) -> FolderRule:
        return self.UPLOAD_FOLDER_RULES.get(folder) or FolderRule()

    def max_upload_bytes(self, folder: Optional[str] = None) -> int:
        """Size limit in bytes for ``folder``, the global limit when it has no rule."""
        limit_mb = self.MAX_UPLOAD_SIZE_MB
        if folder is not None:
            rule_mb = self.folder_rule(folder).max_size_mb
            if rule_mb is not None:
                limit_mb = min(rule_mb, limit_mb)
        return limit_mb * 1024 * 1024

    @property
    def is_debug_mode(self) -> bool:
        """Check if application is in debug mode."""
        return self.DEBUG or self.LOG_LEVEL.upper() == "DEBUG"

    @property
    def use_json_logs(self) -> bool:
        """Determine if JSON logging should be used.

        In production, always use JSON logs.
        In development, allow override via LOG_JSON setting.
        """
        if self.ENVIRONMENT == "production":
            return True
        if self.DEBUG:
            return self.LOG_JSON
        return True

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
