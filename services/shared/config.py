import os


def require_env(name: str) -> str:
    """
    Read a required environment variable.
    Raises RuntimeError at startup if the variable is absent or empty.
    Use this for all security-sensitive configuration (passwords, tokens).
    """
    value = os.environ.get(name, "").strip()
    if not value:
        raise RuntimeError(
            f"Required environment variable '{name}' is not set. "
            "Set it before starting the service."
        )
    return value


def optional_env(name: str, default: str = "") -> str:
    """
    Read an optional environment variable with a safe default.
    Use this only for non-sensitive config (ports, log levels, feature flags).
    """
    return os.environ.get(name, default)


def int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable '{name}' must be an integer, got {raw!r}")


def float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Environment variable '{name}' must be a number, got {raw!r}")


def bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}
