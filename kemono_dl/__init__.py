"""kemono-dl: download posts and files of a creator profile."""
from __future__ import annotations

__version__ = "0.1"
