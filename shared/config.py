"""Shared configuration utilities."""

import os
from typing import Optional


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get a boolean flag from environment ("true"/"1"/"yes" are truthy)."""
    value = get_env(key)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def get_database_url() -> str:
    """Get content database URL from environment."""
    return get_env(
        "DATABASE_URL",
        "sqlite:///./church_content.db",
        required=False
    )


def get_local_storage_url() -> str:
    """Get the database URL backing the client-side local store."""
    return get_env("LOCAL_STORAGE_URL", "sqlite:///./local_storage.db")


def get_api_keys() -> set:
    """
    Get valid admin API keys from environment.

    Supports a comma-separated list in the API_KEYS environment variable.
    If not set, a default key is used for development.
    """
    api_keys_str = get_env("API_KEYS", "dev-api-key-12345")
    return set(key.strip() for key in api_keys_str.split(",") if key.strip())


def get_upload_config() -> dict:
    """Get upload storage configuration from environment."""
    return {
        "upload_dir": get_env("UPLOAD_DIR", "./uploads"),
        "max_bytes": int(get_env("UPLOAD_MAX_BYTES", str(5 * 1024 * 1024))),
        "region": get_env("AWS_REGION", "us-east-1"),
        "s3_bucket": get_env("AWS_S3_BUCKET"),
        "access_key_id": get_env("AWS_ACCESS_KEY_ID"),
        "secret_access_key": get_env("AWS_SECRET_ACCESS_KEY"),
    }


def get_stripe_config() -> dict:
    """Get Stripe configuration from environment."""
    return {
        "secret_key": get_env("STRIPE_SECRET_KEY"),
        "publishable_key": get_env("STRIPE_PUBLISHABLE_KEY", ""),
        "webhook_secret": get_env("STRIPE_WEBHOOK_SECRET"),
    }
