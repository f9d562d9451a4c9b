"""
Environment variable loading for Mempool Watch.

- MEMPOOL_NODE_URL: geth IPC path or ws:// / wss:// URL (default: ~/.ethereum/geth.ipc)
- ELASTICSEARCH_URL: Elasticsearch base URL (default: http://localhost:9200)
- ELASTICSEARCH_USERNAME / ELASTICSEARCH_PASSWORD: optional basic auth
- MEMPOOL_INDEX: index holding pending transactions (default: transactions)
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: config is mempool_watch/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_ES_URL = "http://localhost:9200"
DEFAULT_INDEX_NAME = "transactions"
_GETH_IPC_RELATIVE = Path(".ethereum") / "geth.ipc"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def load_mempool_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def default_node_url() -> str:
    """Return the geth IPC socket path under the user's home directory."""
    return str(Path.home() / _GETH_IPC_RELATIVE)


def get_node_url() -> str:
    load_mempool_env()
    url = (os.getenv("MEMPOOL_NODE_URL") or "").strip()
    return url or default_node_url()


def get_es_url() -> str:
    load_mempool_env()
    url = (os.getenv("ELASTICSEARCH_URL") or "").strip()
    return (url or DEFAULT_ES_URL).rstrip("/")


def get_es_auth() -> tuple[str, str] | None:
    """Return (username, password) when both are set, else None."""
    load_mempool_env()
    user = (os.getenv("ELASTICSEARCH_USERNAME") or "").strip()
    password = os.getenv("ELASTICSEARCH_PASSWORD") or ""
    if user and password:
        return user, password
    return None


def get_index_name() -> str:
    load_mempool_env()
    return (os.getenv("MEMPOOL_INDEX") or "").strip() or DEFAULT_INDEX_NAME


def env_float(name: str, default: float) -> float:
    """Read a float env var; empty/unset -> default. Raises ValueError on garbage."""
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (1/0, true/false), got {raw!r}")
