"""
Configuration for the nanobot core.

Secrets come from the environment (``.env`` is loaded on import). Everything
else comes from JSON config files, read in layers:

    ./config.json                 project defaults
    ~/.nanobot/config.json        per-user settings, merged on top

Nested objects merge key by key, so a user file that only sets
``agents.defaults.model`` keeps the project's other ``agents.defaults``
entries.
"""

import json
import os
import warnings
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

CONFIG_PATH = Path.home() / ".nanobot" / "config.json"
_LOCAL_CONFIG_PATH = Path.cwd() / "config.json"
_CONFIG_LAYERS = (_LOCAL_CONFIG_PATH, CONFIG_PATH)

_user_config: dict = {}


def _merge(base: dict, overlay: dict) -> dict:
    """Return *base* with *overlay* merged in; nested dicts merge recursively."""
    result = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_layer(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        warnings.warn(f"Ignoring unreadable config file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        warnings.warn(f"Ignoring config file {path}: top level is not an object")
        return {}
    return data


def _load_config(layers=_CONFIG_LAYERS) -> dict:
    merged: dict = {}
    for path in layers:
        merged = _merge(merged, _read_layer(path))
    return merged


def get(key: str, default=None):
    """Look up a dotted key, e.g. ``get("providers.openai.api_base")``."""
    node = _user_config
    for part in key.split("."):
        if not isinstance(node, dict):
            return default
        node = node.get(part)
    return default if node is None else node


_user_config = _load_config()


# ---- Paths -------------------------------------------------------------------

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Base directory for sessions and logs.

    ``NANOBOT_DIR`` wins over the ``data_dir`` config key; the fallback is
    ``~/.nanobot``. Resolved once and cached.
    """
    global _data_dir
    if _data_dir is None:
        override = os.environ.get("NANOBOT_DIR") or get("data_dir")
        if override:
            _data_dir = Path(override).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".nanobot"
    return _data_dir


def _reset_data_dir() -> None:
    """Forget the cached data directory (tests, config reloads)."""
    global _data_dir
    _data_dir = None


def get_workspace() -> Path:
    """Agent workspace: ``agents.defaults.workspace`` or ``<data_dir>/workspace``."""
    configured = get("agents.defaults.workspace")
    if configured:
        return Path(configured).expanduser()
    return get_data_dir() / "workspace"


# ---- Providers ---------------------------------------------------------------

_PROVIDER_ENV_KEYS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def get_api_key(provider: str) -> str | None:
    """Key for *provider*: ``providers.<name>.api_key``, else its env var."""
    name = provider.lower()
    configured = get(f"providers.{name}.api_key")
    if configured:
        return configured
    env_key = _PROVIDER_ENV_KEYS.get(name)
    return os.getenv(env_key) if env_key else None


def get_api_base(provider: str) -> str | None:
    """Custom endpoint for *provider*, or None to use the vendor default."""
    return get(f"providers.{provider.lower()}.api_base") or None


# ---- Agent defaults ----------------------------------------------------------

_FALLBACK_MODEL = "anthropic/claude-opus-4-5"

DEFAULT_MODEL = get("agents.defaults.model", _FALLBACK_MODEL)
MAX_TOKENS = get("agents.defaults.max_tokens", 8192)
TEMPERATURE = get("agents.defaults.temperature", 0.7)


def reload_config() -> None:
    """Re-read ``.env`` and the config layers, then refresh the agent defaults.

    Only objects created afterwards see new values; a running AgentLoop
    keeps the adapter and model it was built with.
    """
    global _user_config, DEFAULT_MODEL, MAX_TOKENS, TEMPERATURE

    load_dotenv(override=True)
    _user_config = _load_config()
    _reset_data_dir()

    DEFAULT_MODEL = get("agents.defaults.model", _FALLBACK_MODEL)
    MAX_TOKENS = get("agents.defaults.max_tokens", 8192)
    TEMPERATURE = get("agents.defaults.temperature", 0.7)

    from nanobot.turn_limits import reload as _reload_turn_limits
    _reload_turn_limits()
