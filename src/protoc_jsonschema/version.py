from __future__ import annotations

from importlib import metadata

DISTRIBUTION = "protoc-jsonschema-py"


def get_version() -> str:
    """Installed package version, or "development" when running from a checkout."""
    try:
        return metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "development"
