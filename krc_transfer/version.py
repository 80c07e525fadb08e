"""
Version information for the KRC transfer SDK.

Installed distributions report their metadata version. Source checkouts
read ``pyproject.toml`` beside the package, but only when it describes
this distribution.
"""
import importlib.metadata
import pathlib
from typing import Optional

import tomli

DISTRIBUTION = "krc-transfer-sdk"
DEFAULT_VERSION = "0.3.0"
PYPROJECT = pathlib.Path(__file__).parent.parent / "pyproject.toml"


def _source_version(path: pathlib.Path) -> Optional[str]:
    try:
        with path.open("rb") as f:
            project = tomli.load(f).get("project", {})
    except (FileNotFoundError, tomli.TOMLDecodeError):
        return None
    # A checkout vendored inside another project must not report its version
    if project.get("name", DISTRIBUTION) != DISTRIBUTION:
        return None
    return project.get("version")


def resolve_version(path: pathlib.Path = PYPROJECT) -> str:
    """Installed metadata, else the source checkout's pyproject, else the default."""
    try:
        return importlib.metadata.version(DISTRIBUTION)
    except importlib.metadata.PackageNotFoundError:
        return _source_version(path) or DEFAULT_VERSION


__version__ = resolve_version()
