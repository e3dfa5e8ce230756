from __future__ import annotations

from functools import lru_cache
from importlib import metadata
import os
from pathlib import Path
import re
import tomllib


DIST_NAME = "enrollgate-server"
VERSION_HEADER = "X-Enrollgate-Version"

_SEMVER_RE = re.compile(r"^\d+\.\d+\.\d+$")
_PYPROJECT = Path(__file__).resolve().parents[3] / "pyproject.toml"


def _pyproject_version() -> str | None:
    if not _PYPROJECT.exists():
        return None
    try:
        data = tomllib.loads(_PYPROJECT.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        return None
    v = data.get("project", {}).get("version")
    return v.strip() if isinstance(v, str) else None


def _dist_version() -> str | None:
    try:
        return metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        return None


@lru_cache
def get_app_version() -> str:
    """ENROLLGATE_VERSION, then the source checkout, then installed metadata."""
    for candidate in (os.getenv("ENROLLGATE_VERSION"), _pyproject_version(), _dist_version()):
        if candidate and _SEMVER_RE.match(candidate.strip()):
            return candidate.strip()
    return "0.0.0"
