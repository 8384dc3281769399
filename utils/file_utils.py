"""
File operation utilities
"""

from pathlib import Path
from typing import List
import re

_SEPARATORS = re.compile(r'[\\/]')


def get_record_files(directory: str) -> List[Path]:
    """Get all feature record files in a model directory, sorted by name"""
    path = Path(directory)
    if not path.is_dir():
        return []

    return sorted(
        (f for f in path.iterdir() if f.is_file() and not f.name.startswith('.')),
        key=lambda f: f.name
    )


def base_name(raw_name: str) -> str:
    """Strip directory components, accepting both / and \\ separators"""
    return _SEPARATORS.split(raw_name.strip())[-1]


def strip_extension(name: str) -> str:
    """Drop the last extension of a base name ('12.jpg' -> '12')"""
    stem, dot, _ = name.rpartition('.')
    return stem if dot and stem else name
