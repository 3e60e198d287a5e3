"""Configuration for the site client's data service."""

from dataclasses import dataclass, field
from typing import Callable, Optional

from shared.config import get_env, get_env_bool


@dataclass
class DataServiceConfig:
    """Explicit settings handed to DataService at construction time."""
    api_base_url: str = "http://localhost:3001/api"
    api_key: Optional[str] = None
    use_api: bool = True
    fallback_to_local: bool = True  # dual-write every mutation to the local store
    enable_sync: bool = True
    max_retries: int = 3  # total attempts for retryable remote failures
    retry_delay: float = 1.0
    retry_backoff: float = 2.0
    timeout: float = 15.0
    poll_interval: float = 60.0
    storage_quota: int = 5 * 1024 * 1024
    cleanup_keep: int = 10
    image_max_kb: int = 500
    on_unauthorized: Optional[Callable[[], None]] = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "DataServiceConfig":
        """Build a config from SITE_* environment variables."""
        return cls(
            api_base_url=get_env("SITE_API_BASE_URL", cls.api_base_url),
            api_key=get_env("SITE_API_KEY"),
            use_api=get_env_bool("SITE_USE_API", True),
            fallback_to_local=get_env_bool("SITE_FALLBACK_TO_LOCAL", True),
            enable_sync=get_env_bool("SITE_ENABLE_SYNC", True),
            max_retries=int(get_env("SITE_MAX_RETRIES", str(cls.max_retries))),
            retry_delay=float(get_env("SITE_RETRY_DELAY", str(cls.retry_delay))),
            timeout=float(get_env("SITE_API_TIMEOUT", str(cls.timeout))),
            poll_interval=float(get_env("SITE_POLL_INTERVAL", str(cls.poll_interval))),
            storage_quota=int(get_env("SITE_STORAGE_QUOTA", str(cls.storage_quota))),
        )
