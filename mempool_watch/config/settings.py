"""
Application settings.

Responsibilities:
- Load configuration from environment variables and the project .env file.
- Validate numeric settings and provide defaults for optional ones.
- Expose a typed, immutable Settings object for the CLI and the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from mempool_watch.config.env import (
    DEFAULT_ES_URL,
    DEFAULT_INDEX_NAME,
    default_node_url,
    env_bool,
    env_float,
    env_int,
    get_es_auth,
    get_es_url,
    get_index_name,
    get_node_url,
    load_mempool_env,
)

DEFAULT_REQUEST_TIMEOUT_SEC = 30.0
DEFAULT_RECONCILE_WORKERS = 4
DEFAULT_RECONCILE_QUEUE_SIZE = 64
DEFAULT_HEARTBEAT_INTERVAL_SEC = 30.0


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration.

    node_request_timeout_sec / store_timeout_sec: 0 disables the timeout
    (wait indefinitely).
    store_errors_fatal: when True an unreachable Elasticsearch stops the
    pipeline; when False the write is logged and dropped.
    reconcile_delay_sec: wait before reconciling each new block; 0 reconciles
    immediately, racing pending writes for the same transactions.
    """

    node_url: str = field(default_factory=default_node_url)
    es_url: str = DEFAULT_ES_URL
    es_auth: tuple[str, str] | None = None
    index_name: str = DEFAULT_INDEX_NAME
    node_request_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC
    store_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC
    store_errors_fatal: bool = True
    reconcile_workers: int = DEFAULT_RECONCILE_WORKERS
    reconcile_queue_size: int = DEFAULT_RECONCILE_QUEUE_SIZE
    reconcile_delay_sec: float = 0.0
    track_receipts: bool = False
    heartbeat_interval_sec: float = DEFAULT_HEARTBEAT_INTERVAL_SEC

    def __post_init__(self) -> None:
        if not self.node_url.strip():
            raise ValueError("node_url must be non-empty")
        if not self.index_name.strip():
            raise ValueError("index_name must be non-empty")
        if self.node_request_timeout_sec < 0 or self.store_timeout_sec < 0:
            raise ValueError("timeouts must be >= 0")
        if self.reconcile_workers < 1:
            raise ValueError("reconcile_workers must be >= 1")
        if self.reconcile_queue_size < 1:
            raise ValueError("reconcile_queue_size must be >= 1")
        if self.reconcile_delay_sec < 0:
            raise ValueError("reconcile_delay_sec must be >= 0")

    @property
    def node_timeout(self) -> float | None:
        return self.node_request_timeout_sec or None

    @property
    def store_timeout(self) -> float | None:
        return self.store_timeout_sec or None

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with the non-None keyword values applied (CLI flags)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def get_settings() -> Settings:
    """
    Return the current application settings built from the environment.

    Raises:
        ValueError: a numeric or boolean variable cannot be parsed, or a
            value is out of range.
    """
    load_mempool_env()
    return Settings(
        node_url=get_node_url(),
        es_url=get_es_url(),
        es_auth=get_es_auth(),
        index_name=get_index_name(),
        node_request_timeout_sec=env_float("NODE_REQUEST_TIMEOUT_SEC", DEFAULT_REQUEST_TIMEOUT_SEC),
        store_timeout_sec=env_float("STORE_TIMEOUT_SEC", DEFAULT_REQUEST_TIMEOUT_SEC),
        store_errors_fatal=env_bool("STORE_ERRORS_FATAL", True),
        reconcile_workers=env_int("RECONCILE_WORKERS", DEFAULT_RECONCILE_WORKERS),
        reconcile_queue_size=env_int("RECONCILE_QUEUE_SIZE", DEFAULT_RECONCILE_QUEUE_SIZE),
        reconcile_delay_sec=env_float("RECONCILE_DELAY_SEC", 0.0),
        track_receipts=env_bool("TRACK_RECEIPTS", False),
        heartbeat_interval_sec=env_float("HEARTBEAT_INTERVAL_SEC", DEFAULT_HEARTBEAT_INTERVAL_SEC),
    )
