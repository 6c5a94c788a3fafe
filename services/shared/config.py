import os


def optional_env(name: str, default: str = "") -> str:
    """
    Read an optional environment variable with a safe default.
    Use this only for non-sensitive config (URLs, log levels, price ids).
    """
    return os.environ.get(name, default)


def env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back on bad values."""
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def is_production() -> bool:
    """True when APP_ENV (or NODE_ENV for older deployments) is 'production'."""
    env = os.environ.get("APP_ENV") or os.environ.get("NODE_ENV") or "development"
    return env.strip().lower() == "production"
