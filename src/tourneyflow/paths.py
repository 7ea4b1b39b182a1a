"""
Path utilities for tourneyflow.
"""

import os
from pathlib import Path


def get_data_dir() -> Path:
    """
    Get the data directory for storing the database and imported files.

    Returns:
        - $TOURNEYFLOW_DATA_DIR when set
        - .tourneyflow/ in the current working directory otherwise
    """
    env_dir = os.environ.get("TOURNEYFLOW_DATA_DIR")
    if env_dir:
        data_dir = Path(env_dir)
    else:
        data_dir = Path.cwd() / ".tourneyflow"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_default_db_path() -> Path:
    """Default SQLite database location inside the data directory."""
    return get_data_dir() / "tourneyflow.sqlite"
