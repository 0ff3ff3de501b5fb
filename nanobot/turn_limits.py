"""nanobot/turn_limits.py - Central turn limits registry.

Every agent loop limit lives here as a named constant.
Config.json overrides via ``"turn_limits"``.

Public API:
    get_limit(name)  - lookup (int), KeyError on typo
    reload()         - re-read config overrides
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Default limits
# ---------------------------------------------------------------------------

DEFAULTS: dict[str, int] = {
    # Primary agent loop (provider calls per turn)
    "agent.max_iterations":         20,
    # Background subagent runs
    "subagent.max_iterations":      15,
    # History messages replayed into each turn
    "session.history_messages":     50,
}

# ---------------------------------------------------------------------------
# Runtime state - overrides from config.json
# ---------------------------------------------------------------------------

_overrides: dict[str, int] = {}


def reload() -> None:
    """Re-read config.json overrides for turn limits.

    Called by ``config.reload_config()`` and at import time. The legacy
    ``agents.defaults.max_tool_iterations`` key maps onto
    ``agent.max_iterations``; an explicit ``turn_limits`` entry wins.
    """
    global _overrides
    from nanobot import config

    overrides: dict[str, int] = {}
    legacy = config.get("agents.defaults.max_tool_iterations")
    if legacy is not None:
        overrides["agent.max_iterations"] = legacy
    overrides.update(config.get("turn_limits", {}))
    _overrides = overrides


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def get_limit(name: str) -> int:
    """Return the effective limit for *name*.

    Raises KeyError if *name* is not a known limit (catches typos).
    """
    if name not in DEFAULTS:
        raise KeyError(f"Unknown turn limit: {name!r}")
    val = _overrides.get(name)
    if val is not None:
        return int(val)
    return DEFAULTS[name]


reload()
