"""
File utilities used by the manager configuration.
"""

from .atomic_write import atomic_write_json, atomic_write_text

__all__ = [
    "atomic_write_json",
    "atomic_write_text",
]
