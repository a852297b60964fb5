"""Centralized path configuration for the application."""

import os
from pathlib import Path


def get_data_root() -> Path:
    """
    Get the root directory for data files (normalized artifacts, uploads).

    Respects the DOCNORM_DATA_DIR environment variable.
    If not set, defaults to the current working directory.
    """
    env_path = os.getenv("DOCNORM_DATA_DIR")
    if env_path:
        return Path(env_path)
    return Path(".")


def get_normalized_root() -> Path:
    """Get the root directory for normalized document artifacts."""
    return get_data_root() / "normalized"


def get_uploads_root() -> Path:
    """Get the default directory scanned for uploaded documents."""
    return get_data_root() / "uploads"
