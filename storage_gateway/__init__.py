# storage_gateway/__init__.py

"""
Storage gateway package initialization.

Expose the package version constant (`from storage_gateway import __version__`).
The version is read from the top-level `VERSION` file when available so
releases can be bumped by editing a single file.
"""

from pathlib import Path

_root = Path(__file__).resolve().parents[1]
_version_file = _root / "VERSION"
if _version_file.exists():
	__version__ = _version_file.read_text(encoding="utf-8").strip()
else:
	__version__ = "0.0.0"
