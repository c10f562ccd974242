from __future__ import annotations

from pathlib import Path

from importlib.metadata import PackageNotFoundError, version as _dist_version


def _read_local_pyproject_version() -> str | None:
    """Attempt to read version from local pyproject when running from source.

    Returns None if pyproject.toml is missing or cannot be parsed.
    """
    root = Path(__file__).resolve().parents[1]
    pyproject_path = root / "pyproject.toml"
    if not pyproject_path.exists():
        return None

    try:
        import tomllib  # Python 3.11+
    except ImportError:  # pragma: no cover
        return None

    try:
        with pyproject_path.open("rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return None
    project = data.get("project", {}) if isinstance(data, dict) else {}
    version = project.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    return None


def _resolve_version() -> str:
    # Prefer installed distribution metadata when available
    try:
        return _dist_version("walletlink")
    except PackageNotFoundError:
        pass

    # Fallback: read from local pyproject when running from source
    local = _read_local_pyproject_version()
    if local:
        return local

    return "0.0.0"


__version__: str = _resolve_version()

from walletlink.identity import (  # noqa: E402
    AttestationEngine,
    AttestationRecord,
    EngineState,
    Identity,
    Session,
    VerificationResult,
)

__all__ = [
    "__version__",
    "AttestationEngine",
    "AttestationRecord",
    "EngineState",
    "Identity",
    "Session",
    "VerificationResult",
]
