"""Data types exchanged between the API client, the gate and the downloader.

The remote schema is loosely typed: most fields may be missing or null, and
the post `file`/`attachments` entries have no fixed shape. Constructors here
never raise on odd input; they fall back to empty values instead.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit

from kemono_dl.errors import ProfileURLError


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, list) else []


def _dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


@dataclass(frozen=True)
class ProfileLocator:
    """Remote namespace of a creator: every API call is built from it."""

    base_url: str
    service: str
    user_id: str

    @property
    def api_root(self) -> str:
        return f"{self.base_url}/api/v1/{self.service}/user/{self.user_id}"


def parse_profile_url(url: str) -> ProfileLocator:
    """Parse `{scheme}://{host}/{service}/user/{id}` into a ProfileLocator.

    Examples:
      https://kemono.su/patreon/user/12345 -> (https://kemono.su, patreon, 12345)
      https://kemono.su/fanbox/user/99/post/1?o=50 -> (https://kemono.su, fanbox, 99)
    """
    try:
        parts = urlsplit((url or "").strip())
    except ValueError as exc:
        raise ProfileURLError(f"invalid URL format: {exc}") from exc
    if not parts.scheme or not parts.netloc:
        raise ProfileURLError(f"URL is missing a scheme or host: {url!r}")

    segments = [s for s in (parts.path or "").strip("/").split("/")]
    if len(segments) < 3 or segments[1] != "user":
        raise ProfileURLError("URL does not match expected format: /{service}/user/{user_id}")
    service, user_id = segments[0], segments[2]
    if not service or not user_id:
        raise ProfileURLError("service or user ID is empty")
    return ProfileLocator(base_url=f"{parts.scheme}://{parts.netloc}", service=service, user_id=user_id)


@dataclass
class ProfileSnapshot:
    id: str
    name: str
    service: str
    updated: str = ""
    indexed: str = ""
    public_id: str = ""
    relation_id: Any = None
    post_count: int = 0
    dm_count: int = 0
    share_count: int = 0
    chat_count: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "ProfileSnapshot":
        return cls(
            id=_str(data.get("id")),
            name=_str(data.get("name")),
            service=_str(data.get("service")),
            updated=_str(data.get("updated")),
            indexed=_str(data.get("indexed")),
            public_id=_str(data.get("public_id")),
            relation_id=data.get("relation_id"),
            post_count=_int(data.get("post_count")),
            dm_count=_int(data.get("dm_count")),
            share_count=_int(data.get("share_count")),
            chat_count=_int(data.get("chat_count")),
            raw=dict(data),
        )

    def to_json(self) -> Dict[str, Any]:
        if self.raw:
            return dict(self.raw)
        return {
            "id": self.id,
            "name": self.name,
            "service": self.service,
            "indexed": self.indexed,
            "updated": self.updated,
            "public_id": self.public_id,
            "relation_id": self.relation_id,
            "post_count": self.post_count,
            "dm_count": self.dm_count,
            "share_count": self.share_count,
            "chat_count": self.chat_count,
        }


@dataclass
class PostSummary:
    id: str
    user: str = ""
    service: str = ""
    title: str = ""
    substring: str = ""
    published: str = ""
    attachments: List[Any] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> "PostSummary":
        d = _dict(data)
        return cls(
            id=_str(d.get("id")),
            user=_str(d.get("user")),
            service=_str(d.get("service")),
            title=_str(d.get("title")),
            substring=_str(d.get("substring")),
            published=_str(d.get("published")),
            attachments=_list(d.get("attachments")),
        )


@dataclass
class PostDetail:
    """Authoritative per-post record; `raw` is what gets written to disk."""

    post: Dict[str, Any] = field(default_factory=dict)
    attachments: List[Any] = field(default_factory=list)
    previews: List[Any] = field(default_factory=list)
    videos: List[Any] = field(default_factory=list)
    props: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "PostDetail":
        return cls(
            post=_dict(data.get("post")),
            attachments=_list(data.get("attachments")),
            previews=_list(data.get("previews")),
            videos=_list(data.get("videos")),
            props=_dict(data.get("props")),
            raw=dict(data),
        )

    def to_json(self) -> Dict[str, Any]:
        if self.raw:
            return dict(self.raw)
        return {
            "post": self.post,
            "attachments": self.attachments,
            "previews": self.previews,
            "videos": self.videos,
            "props": self.props,
        }

    def primary_file(self) -> Optional["FileRef"]:
        return extract_file_ref(self.post.get("file"))

    def attachment_files(self) -> List[Optional["FileRef"]]:
        """One entry per raw attachment; None where the entry is unusable."""
        return [extract_file_ref(item) for item in _list(self.post.get("attachments"))]


@dataclass(frozen=True)
class FileRef:
    name: str
    path: str


def safe_file_name(name: str) -> str:
    # keep a single path component so a remote name cannot leave the post folder
    base = re.split(r"[\\/]", name)[-1].strip()
    if base in ("", ".", ".."):
        return ""
    return base


def extract_file_ref(value: Any) -> Optional[FileRef]:
    """Pull a {name, path} pair out of an open-shaped JSON value.

    Returns None when the value is absent, not an object, has non-string
    name/path fields, or an empty name. This is a normal outcome, not an error.
    """
    if not isinstance(value, Mapping):
        return None
    name = value.get("name")
    path = value.get("path")
    if not isinstance(name, str) or not isinstance(path, str):
        return None
    name = safe_file_name(name)
    if not name or not path:
        return None
    return FileRef(name=name, path=path)


@dataclass(frozen=True)
class DownloadTarget:
    directory: str
    file_name: str
    remote_path: str

    @property
    def destination(self) -> str:
        return os.path.join(self.directory, self.file_name)

    def url(self, base_url: str) -> str:
        return base_url + self.remote_path
