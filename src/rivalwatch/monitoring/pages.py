"""Competitor web page monitoring: website snapshots and careers-page listings.

WebsiteMonitor fetches a page and reduces it to a PageSnapshot (title,
meta description, meta tags, JSON-LD blocks, visible text and any
configured CSS selectors). detect_changes() compares two snapshots.

JobBoardMonitor does the same for a careers page and additionally pulls
open roles out of JSON-LD JobPosting entries, falling back to links that
point at individual job pages.

Unlike the social SourceMonitors these raise SourceFetchError on failure:
a page job has nothing useful to store when the fetch fails, so the
processor records a failed attempt and the job backs off.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime
from typing import Any, Callable, Iterable, Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from rivalwatch.db.base import utcnow
from rivalwatch.exceptions import SourceFetchError
from rivalwatch.monitoring.schemas import JobListing, PageChange, PageSnapshot
from rivalwatch.monitoring.sources import CircuitBreaker

logger = logging.getLogger(__name__)

USER_AGENT = "RivalWatch-Monitor/1.0"

PREVIEW_CHARS = 200
MAX_LISTINGS = 200

JOB_LINK_RE = re.compile(r"/(?:jobs?|careers?|positions?|openings?)/[^/?#]+", re.IGNORECASE)

IMPORTANCE_ORDER = ("low", "medium", "high", "critical")


# ---------- Parsing ----------


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _clean(text: str) -> str:
    return " ".join((text or "").split())


def _structured_data(soup: BeautifulSoup) -> list[Any]:
    blocks = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            blocks.append(json.loads(script.string or ""))
        except ValueError:
            logger.debug("Skipping malformed JSON-LD block")
    return blocks


def _meta_tags(soup: BeautifulSoup) -> dict[str, str]:
    tags = {}
    for meta in soup.find_all("meta"):
        key = meta.get("name") or meta.get("property")
        if key and meta.get("content") is not None:
            tags[key] = meta["content"]
    return tags


def _snapshot(
    soup: BeautifulSoup,
    url: str,
    status_code: int,
    selectors: Optional[dict[str, str]],
    fetched_at: datetime,
) -> PageSnapshot:
    title = _clean(soup.title.get_text()) if soup.title else ""
    meta = _meta_tags(soup)
    structured = _structured_data(soup)

    selected = {}
    for name, css in (selectors or {}).items():
        element = soup.select_one(css)
        selected[name] = element.get_text(separator=" ", strip=True) if element else ""

    for element in soup(["script", "style", "noscript", "template"]):
        element.decompose()
    body = soup.body or soup
    text = _clean(body.get_text(separator=" ", strip=True))

    metadata: dict[str, Any] = dict(meta)
    if structured:
        metadata["structured_data"] = structured

    return PageSnapshot(
        url=url,
        status_code=status_code,
        title=title,
        description=meta.get("description") or meta.get("og:description"),
        text=text,
        content_hash=hashlib.sha256(text.encode("utf-8")).hexdigest(),
        metadata=metadata,
        selected=selected,
        fetched_at=fetched_at,
    )


def parse_page(
    html: str,
    url: str,
    status_code: int = 200,
    selectors: Optional[dict[str, str]] = None,
    fetched_at: Optional[datetime] = None,
) -> PageSnapshot:
    """Reduce raw HTML to a PageSnapshot."""
    return _snapshot(_soup(html), url, status_code, selectors, fetched_at or utcnow())


# ---------- Change detection ----------


def text_similarity(old: str, new: str) -> float:
    """Jaccard similarity of the lower-cased whitespace tokens, in [0, 1]."""
    old_tokens = set(old.lower().split())
    new_tokens = set(new.lower().split())
    union = old_tokens | new_tokens
    if not union:
        return 1.0
    return len(old_tokens & new_tokens) / len(union)


def _preview(value: Optional[str]) -> Optional[str]:
    if value is None or len(value) <= PREVIEW_CHARS:
        return value
    return value[:PREVIEW_CHARS] + "..."


def detect_changes(
    previous: Optional[PageSnapshot],
    current: PageSnapshot,
    now: Optional[datetime] = None,
) -> list[PageChange]:
    """Differences between two snapshots of the same page.

    Body text changes carry confidence 1 - similarity. Title, description
    and selector changes are exact comparisons with confidence 1. A page
    seen for the first time has no changes.
    """
    if previous is None:
        return []
    now = now or utcnow()
    changes = []

    if previous.content_hash != current.content_hash:
        similarity = text_similarity(previous.text, current.text)
        changes.append(
            PageChange(
                url=current.url,
                change_type="content",
                old_value=_preview(previous.text),
                new_value=_preview(current.text),
                confidence=round(1 - similarity, 4),
                detected_at=now,
            )
        )

    for field in ("title", "description"):
        old, new = getattr(previous, field), getattr(current, field)
        if old != new:
            changes.append(
                PageChange(
                    url=current.url,
                    change_type="metadata",
                    field=field,
                    old_value=old,
                    new_value=new,
                    confidence=1.0,
                    detected_at=now,
                )
            )

    for name in sorted(set(previous.selected) | set(current.selected)):
        old, new = previous.selected.get(name), current.selected.get(name)
        if old != new:
            changes.append(
                PageChange(
                    url=current.url,
                    change_type="selector",
                    field=name,
                    old_value=_preview(old),
                    new_value=_preview(new),
                    confidence=1.0,
                    detected_at=now,
                )
            )
    return changes


# ---------- Job listings ----------


def classify_job_type(text: str) -> str:
    lowered = text.lower()
    if "intern" in lowered:
        return "internship"
    if "contract" in lowered or "freelance" in lowered:
        return "contract"
    if "part-time" in lowered or "part time" in lowered:
        return "part-time"
    return "full-time"


def is_remote(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in ("remote", "work from home", "distributed"))


def _mentions(text: str, words: Iterable[str]) -> bool:
    return any(re.search(rf"\b{re.escape(word)}\b", text) for word in words)


def assess_job_importance(title: str, department: Optional[str] = None) -> str:
    """How much an opening says about a competitor's direction.

    Executive hires are critical; leadership roles and any opening in
    engineering, product or sales are high; senior individual roles are medium.
    Title keywords match whole words, so "director" is not read as "cto".
    """
    lowered = title.lower()
    dept = (department or "").lower()
    if _mentions(lowered, ("ceo", "cto", "founder")):
        return "critical"
    if _mentions(lowered, ("director", "vp", "head of")) or any(
        word in dept for word in ("engineering", "product", "sales")
    ):
        return "high"
    if _mentions(lowered, ("manager", "lead", "senior")):
        return "medium"
    return "low"


def _iter_job_postings(blocks: Iterable[Any]) -> Iterable[dict]:
    for block in blocks:
        if isinstance(block, list):
            yield from _iter_job_postings(block)
        elif isinstance(block, dict):
            if "@graph" in block:
                yield from _iter_job_postings(block["@graph"])
            kind = block.get("@type")
            kinds = kind if isinstance(kind, list) else [kind]
            if "JobPosting" in kinds:
                yield block


def _posting_location(posting: dict) -> Optional[str]:
    location = posting.get("jobLocation")
    if isinstance(location, list):
        location = location[0] if location else None
    if not isinstance(location, dict):
        return None
    address = location.get("address") or {}
    if isinstance(address, str):
        return address or None
    parts = [address.get("addressLocality"), address.get("addressCountry")]
    parts = [p if isinstance(p, str) else (p or {}).get("name") for p in parts]
    return ", ".join(p for p in parts if p) or None


def _listing_from_posting(posting: dict, base_url: str) -> Optional[JobListing]:
    title = _clean(str(posting.get("title") or ""))
    if not title:
        return None
    employment = posting.get("employmentType") or ""
    if isinstance(employment, list):
        employment = " ".join(employment)
    employment = employment.replace("_", "-")
    department = posting.get("occupationalCategory") or None
    location = _posting_location(posting)
    remote = posting.get("jobLocationType") == "TELECOMMUTE" or is_remote(
        f"{title} {location or ''}"
    )
    url = posting.get("url")
    return JobListing(
        title=title,
        department=department,
        location=location,
        type=classify_job_type(f"{title} {employment}"),
        remote=remote,
        url=urljoin(base_url, url) if url else None,
        strategic_importance=assess_job_importance(title, department),
    )


def _listing_from_link(link: Tag, base_url: str) -> Optional[JobListing]:
    title = _clean(link.get_text(separator=" ", strip=True))
    if not title or len(title) > 120:
        return None
    container = link.find_parent(["li", "tr", "article", "div"]) or link
    context = _clean(container.get_text(separator=" ", strip=True))
    department = container.get("data-department")
    return JobListing(
        title=title,
        department=department,
        type=classify_job_type(context),
        remote=is_remote(context),
        url=urljoin(base_url, link["href"]),
        strategic_importance=assess_job_importance(title, department),
    )


def extract_job_listings(
    soup: BeautifulSoup, base_url: str, structured: Optional[list[Any]] = None
) -> list[JobListing]:
    """Open roles on a careers page, de-duplicated on (title, url).

    JSON-LD JobPosting entries win; job-page links are only used when a page
    publishes no structured postings.
    """
    structured = _structured_data(soup) if structured is None else structured
    listings = [
        listing
        for listing in (_listing_from_posting(p, base_url) for p in _iter_job_postings(structured))
        if listing is not None
    ]
    if not listings:
        for link in soup.find_all("a", href=True):
            if JOB_LINK_RE.search(link["href"]):
                listing = _listing_from_link(link, base_url)
                if listing is not None and listing.url != base_url:
                    listings.append(listing)

    seen = set()
    unique = []
    for listing in listings:
        key = (listing.title.lower(), listing.url)
        if key not in seen:
            seen.add(key)
            unique.append(listing)
    return unique[:MAX_LISTINGS]


def highest_importance(listings: Iterable[JobListing]) -> str:
    ranks = [IMPORTANCE_ORDER.index(listing.strategic_importance) for listing in listings]
    return IMPORTANCE_ORDER[max(ranks)] if ranks else "low"


# ---------- Monitors ----------


class PageMonitor:
    """Fetches competitor pages over httpx behind a per-kind circuit breaker."""

    kind: str = "page"

    def __init__(
        self,
        http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        timeout: float = 30.0,
        user_agent: str = USER_AGENT,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._http_client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        )
        self.user_agent = user_agent
        self.clock = clock
        self.breaker = CircuitBreaker(self.kind)

    async def _download(self, url: str) -> httpx.Response:
        if self.breaker.is_open():
            raise SourceFetchError(
                f"{self.kind} polling paused after repeated failures",
                detail=f"url={url}",
                suggestion=f"Retry after {CircuitBreaker.COOLDOWN_SECONDS}s",
            )
        try:
            async with self._http_client_factory() as client:
                response = await client.get(url, headers={"User-Agent": self.user_agent})
                response.raise_for_status()
        except httpx.HTTPError as exc:
            self.breaker.record_failure()
            logger.warning(
                "%s fetch for %s failed: %s (%d/%d failures)",
                self.kind,
                url,
                exc,
                self.breaker.failure_count,
                CircuitBreaker.FAILURE_THRESHOLD,
            )
            raise SourceFetchError("Page fetch failed", detail=f"{url}: {exc}") from exc
        self.breaker.record_success()
        return response


class WebsiteMonitor(PageMonitor):
    kind = "website"

    async def fetch(self, url: str, selectors: Optional[dict[str, str]] = None) -> PageSnapshot:
        response = await self._download(url)
        return _snapshot(
            _soup(response.text), url, response.status_code, selectors, self.clock()
        )


class JobBoardMonitor(PageMonitor):
    kind = "job_board"

    async def fetch(self, url: str) -> tuple[PageSnapshot, list[JobListing]]:
        """Snapshot of the careers page plus the open roles it lists."""
        response = await self._download(url)
        soup = _soup(response.text)
        structured = _structured_data(soup)
        listings = extract_job_listings(soup, url, structured)
        snapshot = _snapshot(soup, url, response.status_code, None, self.clock())
        logger.debug("Found %d listings on %s", len(listings), url)
        return snapshot, listings
