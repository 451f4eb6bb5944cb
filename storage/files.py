"""
Data file location utilities: default data file under data/,
ensure the containing directory exists before a write.
"""
import os
BASE = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
DEFAULT_DATA_FILE = "flipchanger.db"

def data_path(name: str = DEFAULT_DATA_FILE) -> str:
    return os.path.join(BASE, name)

def ensure_parent_dir(path: str) -> None:
    d = os.path.dirname(os.path.abspath(path))
    os.makedirs(d, exist_ok=True)
