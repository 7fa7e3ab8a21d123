"""On-disk layout helpers.

    {service}/{profile_id}/{profile_name}.json      profile snapshot
    {service}/{user_id}/{post_id}/{post_id}.json    post detail
    {service}/{user_id}/{post_id}/{file_name}       downloaded media
    {service}/{user_id}/failed.json                 failed download URLs
"""
from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Any, List, Tuple

from kemono_dl.errors import StorageError
from kemono_dl.models import PostDetail, ProfileLocator

logger = logging.getLogger(__name__)

FAILED_FILE_NAME = "failed.json"


def profile_dir(base_dir: str, service: str, profile_id: str) -> str:
    return os.path.join(base_dir, service, profile_id)


def user_dir(base_dir: str, locator: ProfileLocator) -> str:
    return os.path.join(base_dir, locator.service, locator.user_id)


def post_dir(base_dir: str, locator: ProfileLocator, post_id: str) -> str:
    return os.path.join(user_dir(base_dir, locator), post_id)


def write_json_atomic(path: str, data: Any) -> None:
    """Write `data` as indented JSON; readers see either the old file or the new one."""
    d = os.path.dirname(path) or "."
    try:
        os.makedirs(d, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=d)
    except OSError as exc:
        raise StorageError(f"failed to prepare {path}: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False, indent=2)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except (OSError, TypeError, ValueError) as exc:
        try:
            os.remove(tmp)
        except OSError:
            pass
        raise StorageError(f"failed to write {path}: {exc}") from exc


def save_post(base_dir: str, locator: ProfileLocator, post_id: str, detail: PostDetail) -> str:
    path = os.path.join(post_dir(base_dir, locator, post_id), f"{post_id}.json")
    write_json_atomic(path, detail.to_json())
    return path


class FailureLog:
    """Ordered, de-duplicated list of download URLs that failed for one profile.

    An unreadable log is never overwritten: the first append moves it to
    `<path>.bad` and starts a fresh list.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    @classmethod
    def for_profile(cls, base_dir: str, locator: ProfileLocator) -> "FailureLog":
        return cls(os.path.join(user_dir(base_dir, locator), FAILED_FILE_NAME))

    def _load(self) -> Tuple[List[str], bool]:
        """Return (urls, corrupt)."""
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            return [], False
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable failure log %s: %s", self.path, exc)
            return [], True
        if not isinstance(raw, list):
            logger.warning("Ignoring failure log %s: not a JSON list", self.path)
            return [], True
        seen = set()
        out = []
        for u in raw:
            if isinstance(u, str) and u not in seen:
                seen.add(u)
                out.append(u)
        return out, False

    def urls(self) -> List[str]:
        return self._load()[0]

    def append(self, url: str) -> bool:
        """Record `url`. Returns False if it was already present."""
        current, corrupt = self._load()
        if url in current:
            return False
        if corrupt:
            backup = self.path + ".bad"
            try:
                os.replace(self.path, backup)
            except OSError as exc:
                raise StorageError(f"failed to move aside unreadable failure log {self.path}: {exc}") from exc
            logger.warning("Moved unreadable failure log to %s", backup)
        current.append(url)
        write_json_atomic(self.path, current)
        return True

    def __contains__(self, url: object) -> bool:
        return url in self.urls()

    def __len__(self) -> int:
        return len(self.urls())
