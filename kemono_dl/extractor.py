"""Command-line entry point for kemono-dl

- parses a creator profile URL (https://host/{service}/user/{id})
- skips the run when the stored profile snapshot has the same `updated` timestamp
- walks every post page, saves per-post JSON and downloads files and attachments
- records failed download URLs in {service}/{user}/failed.json
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import re
import time
from typing import Dict, Optional

from kemono_dl.api import fetch_posts_with_pagination, fetch_profile
from kemono_dl.downloader import BROWSER_USER_AGENT, FileAcquirer, new_stats, process_posts
from kemono_dl.errors import KemonoError
from kemono_dl.http_client import DEFAULT_TIMEOUT, Fetcher, RateLimiter
from kemono_dl.models import parse_profile_url
from kemono_dl.storage import FailureLog, profile_dir
from kemono_dl.user_profile import save_profile, should_update_profile

logger = logging.getLogger(__name__)

DEFAULT_RATE = 1.0
LOG_FORMAT = "%(asctime)s %(levelname)-7s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

_DURATION_RE = re.compile(r"(\d+(?:\.\d+)?)(h|m|s)")


def parse_duration(value: str) -> float:
    """Parse `120`, `90s`, `2m`, `1h30m` into seconds."""
    text = (value or "").strip().lower()
    if not text:
        raise ValueError("empty duration")
    try:
        seconds = float(text)
    except ValueError:
        pos = 0
        seconds = 0.0
        for m in _DURATION_RE.finditer(text):
            if m.start() != pos:
                raise ValueError(f"invalid duration: {value!r}")
            seconds += float(m.group(1)) * {"h": 3600, "m": 60, "s": 1}[m.group(2)]
            pos = m.end()
        if pos != len(text):
            raise ValueError(f"invalid duration: {value!r}")
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {value!r}")
    return seconds


def _duration_arg(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def load_config(path: Optional[str]) -> Dict:
    if not path:
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def resolve_settings(args: argparse.Namespace, cfg: Dict) -> Dict:
    """Merge CLI flags, environment variables and the config file (in that order of precedence)."""
    kemono_cfg = cfg.get("extractor", {}).get("kemono", {}) if isinstance(cfg, dict) else {}

    rate = args.rate
    if rate is None:
        rate = float(os.environ.get("KEMONO_DL_RATE") or kemono_cfg.get("rate") or DEFAULT_RATE)

    timeout = args.timeout
    if timeout is None:
        raw_timeout = os.environ.get("KEMONO_DL_TIMEOUT") or kemono_cfg.get("timeout")
        timeout = parse_duration(str(raw_timeout)) if raw_timeout else DEFAULT_TIMEOUT

    outdir = args.output_dir or os.environ.get("KEMONO_DL_OUTPUT_DIR") or kemono_cfg.get("output_dir") or os.getcwd()

    return {
        "rate": float(rate),
        "timeout": float(timeout),
        "output_dir": os.path.abspath(outdir),
        "user_agent": kemono_cfg.get("user_agent") or BROWSER_USER_AGENT,
    }


def configure_logging(outdir: str, debug: bool = False) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    # dedicated file-only logger for per-file URL -> destination lines
    try:
        os.makedirs(outdir, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(outdir, "logs.txt"), encoding="utf-8")
    except OSError as exc:
        logger.warning("File logging disabled: %s", exc)
        return
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s : %(message)s", datefmt=LOG_DATEFMT))
    file_logger = logging.getLogger("kemono_file")
    file_logger.setLevel(log_level)
    file_logger.addHandler(file_handler)
    file_logger.propagate = False


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="kemono-dl",
        description="kemono-dl: download posts, attachments and metadata of a creator profile",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s https://kemono.su/patreon/user/12345
  %(prog)s --skip-download https://kemono.su/fanbox/user/678
  %(prog)s --force --timeout 5m -o downloads https://kemono.su/patreon/user/12345
        """.strip(),
    )
    p.add_argument("url", help="Creator profile URL: https://host/{service}/user/{id}")
    p.add_argument("--force", action="store_true", help="Force update even if profile timestamp hasn't changed")
    p.add_argument(
        "--skip-download",
        "--metadata-only",
        dest="skip_download",
        action="store_true",
        help="Only fetch and save metadata, skip downloading files",
    )
    p.add_argument("--timeout", type=_duration_arg, default=None, help="Per-download attempt timeout, e.g. 90s, 2m (default: 2m)")
    p.add_argument("--output-dir", "-o", default=None, help="Output directory (default: current directory)")
    p.add_argument("--rate", type=float, default=None, help="Maximum requests per second (default: 1)")
    p.add_argument("--config", "-c", help="Path to config JSON file")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p


def run(
    url: str,
    outdir: str,
    fetcher: Fetcher,
    force: bool = False,
    skip_download: bool = False,
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = BROWSER_USER_AGENT,
) -> Dict[str, int]:
    """Run one profile sync. Raises KemonoError for failures that end the run."""
    locator = parse_profile_url(url)
    logger.info("Base URL: %s", locator.base_url)
    logger.info("Service: %s", locator.service)
    logger.info("User ID: %s", locator.user_id)
    if skip_download:
        logger.info("Skip download mode enabled - will only fetch metadata")

    stats = new_stats()

    snapshot = fetch_profile(fetcher, locator)
    logger.info("Total posts on profile: %d", snapshot.post_count)

    if not should_update_profile(profile_dir(outdir, locator.service, snapshot.id), snapshot, force=force):
        logger.info("Nothing to download")
        return stats

    save_profile(outdir, snapshot)

    posts = fetch_posts_with_pagination(fetcher, locator, stats=stats)

    acquirer = FileAcquirer(
        fetcher,
        locator.base_url,
        FailureLog.for_profile(outdir, locator),
        timeout=timeout,
        user_agent=user_agent,
    )
    process_posts(posts, locator, outdir, fetcher, acquirer, skip_download=skip_download, stats=stats)
    return stats


def _log_summary(stats: Dict[str, int], started: float) -> None:
    elapsed = time.time() - started
    # format bytes with thousands separator via f-string to avoid logging format conflicts
    summary = (
        f"Summary:\n  Pages fetched: {stats.get('pages_fetched', 0)}\n  Posts processed: {stats.get('posts_processed', 0)}\n"
        f"  Posts failed: {stats.get('posts_failed', 0)}\n"
        f"  Media attempted: {stats.get('media_attempted', 0)}\n  Media downloaded: {stats.get('media_downloaded', 0)}\n"
        f"  Media failed: {stats.get('media_failed', 0)}\n  Media skipped: {stats.get('media_skipped', 0)}\n"
        f"  Bytes downloaded: {stats.get('bytes_downloaded', 0):,}\n  Elapsed time: {elapsed:.1f}s"
    )
    logger.info(summary)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    started = time.time()

    try:
        cfg = load_config(args.config)
    except (OSError, ValueError) as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
        logger.error("Failed to load config %s: %s", args.config, exc)
        return 1
    try:
        settings = resolve_settings(args, cfg)
    except (TypeError, ValueError) as exc:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
        logger.error("Invalid settings: %s", exc)
        return 1

    configure_logging(settings["output_dir"], debug=args.debug)

    fetcher = Fetcher(RateLimiter(settings["rate"]))
    try:
        stats = run(
            args.url,
            settings["output_dir"],
            fetcher,
            force=args.force,
            skip_download=args.skip_download,
            timeout=settings["timeout"],
            user_agent=settings["user_agent"],
        )
    except KemonoError as exc:
        logger.error("%s", exc)
        return 1
    finally:
        fetcher.session.close()

    _log_summary(stats, started)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
