"""Profile snapshot helpers for kemono-dl.

The remote profile's `updated` timestamp is the only change signal we get, so
a local copy of the last profile response decides whether a run has work to do.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Optional

from kemono_dl.errors import StorageError
from kemono_dl.models import ProfileSnapshot, safe_file_name
from kemono_dl.storage import FAILED_FILE_NAME, profile_dir, write_json_atomic

logger = logging.getLogger(__name__)


def snapshot_file_name(snapshot: ProfileSnapshot) -> str:
    return f"{safe_file_name(snapshot.name) or snapshot.id}.json"


def snapshot_path(base_dir: str, snapshot: ProfileSnapshot) -> str:
    return os.path.join(profile_dir(base_dir, snapshot.service, snapshot.id), snapshot_file_name(snapshot))


def save_profile(base_dir: str, snapshot: ProfileSnapshot) -> str:
    path = snapshot_path(base_dir, snapshot)
    write_json_atomic(path, snapshot.to_json())
    return path


def find_snapshot_file(directory: str, file_name: Optional[str] = None) -> Optional[str]:
    """Locate the stored profile JSON in `directory`.

    Prefers `file_name`; otherwise the first other top-level *.json that is
    not the failure log. Post JSON lives in subdirectories and is never matched.
    """
    if file_name:
        preferred = os.path.join(directory, file_name)
        if os.path.isfile(preferred):
            return preferred
    try:
        entries = sorted(os.listdir(directory))
    except OSError as exc:
        raise StorageError(f"failed to read profile directory {directory}: {exc}") from exc
    for fname in entries:
        if not fname.endswith(".json") or fname == FAILED_FILE_NAME or fname.startswith("."):
            continue
        fpath = os.path.join(directory, fname)
        if os.path.isfile(fpath):
            return fpath
    return None


def load_snapshot(path: str) -> Optional[ProfileSnapshot]:
    """Read a stored snapshot; None if the file is unreadable or not a JSON object."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        logger.warning("Could not read stored profile %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Stored profile %s is not a JSON object", path)
        return None
    return ProfileSnapshot.from_json(data)


def should_update_profile(directory: str, snapshot: ProfileSnapshot, force: bool = False) -> bool:
    """Return True when the profile needs a resync.

    Only the `updated` timestamp is compared; per-post changes are not detected.
    """
    if force:
        logger.info("Force update enabled, skipping timestamp check")
        return True
    if not os.path.exists(directory):
        return True
    if not os.path.isdir(directory):
        raise StorageError(f"profile path exists but is not a directory: {directory}")

    path = find_snapshot_file(directory, snapshot_file_name(snapshot))
    if path is None:
        logger.debug("No stored profile in %s", directory)
        return True

    stored = load_snapshot(path)
    if stored is None:
        return True
    if stored.updated == snapshot.updated:
        logger.debug("Profile unchanged since %s", stored.updated)
        return False
    logger.info("Profile updated: %s -> %s", stored.updated or "(unknown)", snapshot.updated or "(unknown)")
    return True
