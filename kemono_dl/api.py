"""Creator API calls: profile, paginated post listing and post details."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from kemono_dl.errors import DecodeError, KemonoError, PaginationError
from kemono_dl.http_client import PAGE_POLICY, BackoffPolicy, Fetcher, call_with_retries
from kemono_dl.models import PostDetail, PostSummary, ProfileLocator, ProfileSnapshot

logger = logging.getLogger(__name__)

PAGE_SIZE = 50

# the API serves HTML instead of JSON unless this exact Accept value is sent
API_HEADERS = {"Accept": "text/css"}


def profile_url(locator: ProfileLocator) -> str:
    return f"{locator.api_root}/profile"


def posts_url(locator: ProfileLocator, offset: int = 0) -> str:
    url = f"{locator.api_root}/posts"
    if offset > 0:
        url = f"{url}?o={int(offset)}"
    return url


def post_url(locator: ProfileLocator, post_id: str) -> str:
    return f"{locator.api_root}/post/{post_id}"


def fetch_profile(fetcher: Fetcher, locator: ProfileLocator) -> ProfileSnapshot:
    data = fetcher.get_json(profile_url(locator), headers=API_HEADERS, operation="profile fetch")
    if not isinstance(data, dict):
        raise DecodeError(f"profile response is not a JSON object: {type(data).__name__}")
    return ProfileSnapshot.from_json(data)


def fetch_posts_page(fetcher: Fetcher, locator: ProfileLocator, offset: int = 0) -> List[PostSummary]:
    url = posts_url(locator, offset)
    data = fetcher.get_json(url, headers=API_HEADERS, operation=f"posts page o={offset}")
    if not isinstance(data, list):
        raise DecodeError(f"posts response is not a JSON array: {type(data).__name__}")
    return [PostSummary.from_json(item) for item in data]


def fetch_post_detail(fetcher: Fetcher, locator: ProfileLocator, post_id: str) -> PostDetail:
    data = fetcher.get_json(post_url(locator, post_id), headers=API_HEADERS, operation=f"post {post_id}")
    if not isinstance(data, dict):
        raise DecodeError(f"post {post_id} response is not a JSON object: {type(data).__name__}")
    return PostDetail.from_json(data)


def _is_client_error(exc: BaseException) -> bool:
    return isinstance(exc, KemonoError)


def fetch_posts_with_pagination(
    fetcher: Fetcher,
    locator: ProfileLocator,
    page_size: int = PAGE_SIZE,
    page_policy: BackoffPolicy = PAGE_POLICY,
    sleep_fn: Optional[Callable[[float], None]] = None,
    stats: Optional[Dict[str, int]] = None,
) -> List[PostSummary]:
    """Fetch every post by walking `?o=` offsets until a short or empty page.

    Each page gets `page_policy.max_attempts` tries on top of the fetcher's own
    429 handling. If a page still fails, PaginationError is raised and nothing
    is returned: an incomplete listing must not look like a finished crawl.
    Successfully fetched pages, the empty terminal page included, are counted
    in `stats["pages_fetched"]` when `stats` is given.
    """
    posts: List[PostSummary] = []
    offset = 0
    page_number = 1
    while True:
        logger.info("Fetching page %d (offset=%d)", page_number, offset)
        try:
            page = call_with_retries(
                lambda: fetch_posts_page(fetcher, locator, offset),
                policy=page_policy,
                is_retryable=_is_client_error,
                operation=f"Page {page_number}",
                sleep_fn=sleep_fn,
            )
        except KemonoError as exc:
            logger.error("Page %d failed after %d attempts: %s", page_number, page_policy.max_attempts, exc)
            raise PaginationError(
                f"failed to fetch page {page_number} after {page_policy.max_attempts} attempts: {exc}"
            ) from exc

        if stats is not None:
            stats["pages_fetched"] = stats.get("pages_fetched", 0) + 1

        if not page:
            logger.info("Page %d: no more posts available.", page_number)
            break

        logger.info("Page %d fetched (%d/%d posts)", page_number, len(page), page_size)
        posts.extend(page)

        if len(page) < page_size:
            break

        offset += page_size
        page_number += 1

    logger.info("Total posts fetched: %d", len(posts))
    return posts
