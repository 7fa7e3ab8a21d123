"""File downloads and per-post processing.

- `FileAcquirer` downloads one file: skip if present, stream to a .part file,
  rename on success, record the URL in the failure log on any error
- `process_posts` walks the post list: fetch details, save JSON, download files
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional

import requests

from kemono_dl.api import fetch_post_detail
from kemono_dl.errors import DownloadTimeoutError, KemonoError, StorageError, TransportError
from kemono_dl.http_client import DEFAULT_CONNECT_TIMEOUT, DEFAULT_TIMEOUT, DOWNLOAD_POLICY, BackoffPolicy, Fetcher
from kemono_dl.models import DownloadTarget, FileRef, PostSummary, ProfileLocator
from kemono_dl.storage import FailureLog, post_dir, save_post

logger = logging.getLogger(__name__)
# file-only logger, configured by the CLI
file_logger = logging.getLogger("kemono_file")

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
PART_SUFFIX = ".part"
CHUNK_SIZE = 64 * 1024
MB = 1024 * 1024


def new_stats() -> Dict[str, int]:
    return {
        "pages_fetched": 0,
        "posts_processed": 0,
        "posts_failed": 0,
        "media_attempted": 0,
        "media_downloaded": 0,
        "media_skipped": 0,
        "media_failed": 0,
        "bytes_downloaded": 0,
    }


class ProgressTracker:
    """Running byte count that logs at most once per `interval` seconds."""

    def __init__(
        self,
        file_name: str,
        total_size: Optional[int] = None,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        started: Optional[float] = None,
    ) -> None:
        self.file_name = file_name
        self.total_size = total_size if total_size and total_size > 0 else None
        self.interval = interval
        self._clock = clock
        self.started = clock() if started is None else started
        self._last_log = self.started
        self.downloaded = 0
        self.reports = 0

    def update(self, n: int) -> None:
        self.downloaded += n
        now = self._clock()
        if now - self._last_log >= self.interval:
            self._last_log = now
            self._report()

    def _report(self) -> None:
        self.reports += 1
        done_mb = self.downloaded / MB
        if self.total_size:
            pct = self.downloaded / self.total_size * 100
            logger.info("[%s] Progress: %.1f%% (%.2f MB / %.2f MB)", self.file_name, pct, done_mb, self.total_size / MB)
        else:
            logger.info("[%s] Downloaded: %.2f MB (unknown total size)", self.file_name, done_mb)

    def finish(self) -> float:
        """Log the completion line and return elapsed seconds."""
        self.reports += 1
        elapsed = max(self._clock() - self.started, 1e-9)
        size_mb = self.downloaded / MB
        logger.info(
            "Completed download: %s (%.2f MB in %.1fs at %.2f MB/s)",
            self.file_name,
            size_mb,
            elapsed,
            size_mb / elapsed,
        )
        return elapsed


@dataclass(frozen=True)
class DownloadResult:
    status: str  # "downloaded" or "skipped"
    path: str
    bytes: int = 0


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove partial file %s: %s", path, exc)


class FileAcquirer:
    """Downloads files for one profile, recording failed URLs in its FailureLog."""

    def __init__(
        self,
        fetcher: Fetcher,
        base_url: str,
        failure_log: FailureLog,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = BROWSER_USER_AGENT,
        policy: BackoffPolicy = DOWNLOAD_POLICY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.base_url = base_url
        self.failure_log = failure_log
        self.timeout = float(timeout)
        self.user_agent = user_agent
        self.policy = policy
        self._clock = clock

    def acquire(self, target: DownloadTarget) -> DownloadResult:
        dest = target.destination
        if os.path.exists(dest):
            logger.info("File already exists, skipping: %s", target.file_name)
            return DownloadResult("skipped", dest)

        url = target.url(self.base_url)
        try:
            result = self._download(url, target)
        except (KemonoError, OSError) as exc:
            try:
                self.failure_log.append(url)
            except StorageError as log_exc:
                logger.warning("Could not record failed download %s: %s", url, log_exc)
            file_logger.warning("Failed to download : %s -> %s (%s)", url, dest, exc)
            raise
        file_logger.info("Downloaded from %s -> %s", url, dest)
        return result

    def _download(self, url: str, target: DownloadTarget) -> DownloadResult:
        os.makedirs(target.directory, exist_ok=True)
        dest = target.destination
        part = dest + PART_SUFFIX
        headers = {"User-Agent": self.user_agent}

        logger.info("Starting download: %s", target.file_name)
        # the clock restarts with every attempt; backoff before the last one does not count
        attempt_starts = []
        resp = self.fetcher.request(
            "GET",
            url,
            headers=headers,
            stream=True,
            timeout=(min(DEFAULT_CONNECT_TIMEOUT, self.timeout), self.timeout),
            policy=self.policy,
            operation=f"download {target.file_name}",
            on_attempt=lambda: attempt_starts.append(self._clock()),
        )
        started = attempt_starts[-1] if attempt_starts else self._clock()
        with resp:
            total = _content_length(resp)
            progress = ProgressTracker(target.file_name, total, clock=self._clock, started=started)
            try:
                with open(part, "wb") as fh:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if self._clock() - started > self.timeout:
                            raise DownloadTimeoutError(
                                f"download of {target.file_name} exceeded {self.timeout:.0f}s"
                            )
                        if chunk:
                            fh.write(chunk)
                            progress.update(len(chunk))
                os.replace(part, dest)
            except requests.RequestException as exc:
                _remove_quietly(part)
                raise TransportError(f"failed to read {target.file_name}: {exc}") from exc
            except BaseException:
                _remove_quietly(part)
                raise
        progress.finish()
        return DownloadResult("downloaded", dest, progress.downloaded)


def _content_length(resp: requests.Response) -> Optional[int]:
    try:
        return int(resp.headers.get("Content-Length") or 0) or None
    except (TypeError, ValueError):
        return None


def _acquire_one(acquirer: FileAcquirer, directory: str, ref: FileRef, post_id: str, stats: Dict[str, int]) -> None:
    stats["media_attempted"] += 1
    target = DownloadTarget(directory=directory, file_name=ref.name, remote_path=ref.path)
    try:
        result = acquirer.acquire(target)
    except (KemonoError, OSError) as exc:
        stats["media_failed"] += 1
        logger.warning("Failed to download %s for post %s: %s", ref.name, post_id, exc)
        return
    if result.status == "skipped":
        stats["media_skipped"] += 1
    else:
        stats["media_downloaded"] += 1
        stats["bytes_downloaded"] += result.bytes


def process_posts(
    posts: Iterable[PostSummary],
    locator: ProfileLocator,
    base_dir: str,
    fetcher: Fetcher,
    acquirer: FileAcquirer,
    skip_download: bool = False,
    stats: Optional[Dict[str, int]] = None,
) -> Dict[str, int]:
    """Fetch, save and download every post. One post failing never stops the batch."""
    stats = stats if stats is not None else new_stats()
    posts = list(posts)
    total = len(posts)
    logger.info("Processing %d posts", total)

    for idx, summary in enumerate(posts, start=1):
        post_id = summary.id
        if not post_id:
            logger.warning("[%d/%d] Skipping post without id", idx, total)
            stats["posts_failed"] += 1
            continue
        logger.info("[%d/%d] Fetching detailed data for post: %s", idx, total, post_id)

        try:
            detail = fetch_post_detail(fetcher, locator, post_id)
        except KemonoError as exc:
            logger.warning("Failed to fetch detailed post %s: %s", post_id, exc)
            stats["posts_failed"] += 1
            continue

        try:
            save_post(base_dir, locator, post_id, detail)
        except StorageError as exc:
            logger.warning("Failed to save post %s: %s", post_id, exc)
            stats["posts_failed"] += 1
            continue
        stats["posts_processed"] += 1
        logger.info("Saved post metadata: %s", post_id)

        if skip_download:
            logger.info("Skipping file download for post %s (skip-download mode)", post_id)
            continue

        directory = post_dir(base_dir, locator, post_id)
        ref = detail.primary_file()
        if ref is None:
            logger.debug("No usable file in post %s", post_id)
        else:
            _acquire_one(acquirer, directory, ref, post_id, stats)

        refs = detail.attachment_files()
        if not refs:
            logger.debug("No attachments found in post %s", post_id)
        for i, ref in enumerate(refs):
            if ref is None:
                logger.debug("Attachment %d of post %s has no usable name/path", i, post_id)
                continue
            _acquire_one(acquirer, directory, ref, post_id, stats)

    return stats
