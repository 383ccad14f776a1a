"""Per-platform source monitors, credential resolution, and circuit breakers.

Each SourceMonitor fetches a competitor's recent posts from one platform API
and normalizes them to Post records. fetch() never raises: missing
credentials, HTTP errors and malformed payloads are logged and produce an
empty list. Repeated failures open a per-platform circuit breaker so a dead
API is not hammered every cycle.

All HTTP calls use httpx.AsyncClient. Tests inject a client factory built on
httpx.MockTransport.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

import httpx
from sqlalchemy.orm import Session

from rivalwatch.config import Settings, get_settings
from rivalwatch.exceptions import SourceFetchError, UnsupportedPlatformError
from rivalwatch.monitoring.models import SocialConnection
from rivalwatch.monitoring.schemas import EngagementMetrics, Post

logger = logging.getLogger(__name__)

HASHTAG_RE = re.compile(r"#\w+")
MENTION_RE = re.compile(r"@\w+")

PROFILE_URL_TEMPLATES = {
    "linkedin": "https://linkedin.com/company/{handle}",
    "twitter": "https://twitter.com/{handle}",
    "facebook": "https://facebook.com/{handle}",
    "instagram": "https://instagram.com/{handle}",
    "youtube": "https://youtube.com/@{handle}",
}

MAX_POSTS = 50


def platform_url(platform: str, handle: str) -> str:
    """Public profile URL for a handle; unknown platforms get https://<platform>.com/<handle>."""
    template = PROFILE_URL_TEMPLATES.get(platform, "https://" + platform + ".com/{handle}")
    return template.format(handle=handle.lstrip("@"))


def extract_hashtags(text: str) -> list[str]:
    """Lower-cased, de-duplicated hashtags in order of first appearance."""
    seen: dict[str, None] = {}
    for tag in HASHTAG_RE.findall(text or ""):
        seen.setdefault(tag.lower(), None)
    return list(seen)


def extract_mentions(text: str) -> list[str]:
    """De-duplicated @mentions in order of first appearance."""
    return list(dict.fromkeys(MENTION_RE.findall(text or "")))


def _parse_timestamp(value: Any) -> datetime:
    """Parse ISO-8601 strings or epoch milliseconds to aware UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


# ---------- Circuit breaker ----------


class CircuitBreaker:
    """Stop polling a platform API after it keeps failing.

    FAILURE_THRESHOLD failed fetches in a row open the breaker. While open,
    monitors return no posts without touching the network. The first check
    after COOLDOWN_SECONDS since the last failure closes it again with a
    clean count, so the next cycle gets one fresh attempt.
    """

    FAILURE_THRESHOLD = 5
    COOLDOWN_SECONDS = 300

    def __init__(self, name: str) -> None:
        self.name = name
        self.failure_count: int = 0
        self.last_failure_at: Optional[float] = None
        self._open: bool = False

    def record_success(self) -> None:
        self.failure_count = 0
        self._open = False

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_at = time.time()
        if self.failure_count >= self.FAILURE_THRESHOLD:
            self._open = True
            logger.warning(
                "Pausing %s polling for %ds: %d failed fetches in a row",
                self.name,
                self.COOLDOWN_SECONDS,
                self.failure_count,
            )

    def is_open(self) -> bool:
        """True while polling is paused. Closes itself once the cooldown has passed."""
        if not self._open:
            return False

        if self.last_failure_at is not None:
            if time.time() - self.last_failure_at >= self.COOLDOWN_SECONDS:
                logger.info("Resuming %s polling after cooldown", self.name)
                self._open = False
                self.failure_count = 0
                return False

        return True


# ---------- Credentials ----------


@dataclass
class Credentials:
    access_token: str
    token_secret: Optional[str] = None
    account_id: Optional[str] = None
    source: str = "default"  # "user" or "default"


_DEFAULT_TOKEN_FIELDS = {
    "linkedin": "linkedin_access_token",
    "twitter": "twitter_bearer_token",
    "facebook": "facebook_access_token",
    "instagram": "instagram_access_token",
    "youtube": "youtube_api_key",
}


class TokenResolver:
    """Resolve platform credentials per user, falling back to process-wide keys."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    def resolve(self, platform: str, user_id: Optional[str] = None) -> Optional[Credentials]:
        """Return credentials for platform, or None when nothing is configured."""
        if user_id and self._session_factory is not None:
            db = self._session_factory()
            connection = (
                db.query(SocialConnection)
                .filter_by(user_id=user_id, platform=platform, is_active=True)
                .first()
            )
            if connection and connection.access_token:
                return Credentials(
                    access_token=connection.access_token,
                    token_secret=connection.token_secret,
                    account_id=connection.account_id,
                    source="user",
                )

        field = _DEFAULT_TOKEN_FIELDS.get(platform)
        secret = getattr(self.settings, field, None) if field else None
        if secret is None:
            return None
        account_id = (
            self.settings.instagram_business_account_id if platform == "instagram" else None
        )
        return Credentials(access_token=secret.get_secret_value(), account_id=account_id)


# ---------- Monitors ----------


class SourceMonitor:
    """Base class: one implementation per platform.

    Subclasses implement _fetch_posts(client, handle, credentials) and may
    raise freely; fetch() converts every failure into an empty result.
    """

    platform: str = ""

    def __init__(
        self,
        tokens: Optional[TokenResolver] = None,
        http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        timeout: float = 30.0,
    ) -> None:
        self.tokens = tokens or TokenResolver()
        self._http_client_factory = http_client_factory or (
            lambda: httpx.AsyncClient(timeout=timeout)
        )
        self.breaker = CircuitBreaker(self.platform)

    async def fetch(self, handle: str, user_id: Optional[str] = None) -> list[Post]:
        """Fetch recent posts for handle. Never raises; returns [] on any failure."""
        if self.breaker.is_open():
            logger.debug("Skipping %s fetch -- circuit breaker is open", self.platform)
            return []

        try:
            credentials = self.tokens.resolve(self.platform, user_id)
        except Exception as exc:
            # Credential storage errors do not count against the platform breaker
            logger.warning(
                "Could not resolve %s credentials (user=%s): %s",
                self.platform,
                user_id,
                exc,
            )
            return []
        if credentials is None:
            logger.warning(
                "No %s credentials configured (user=%s); returning no posts",
                self.platform,
                user_id,
            )
            return []

        try:
            async with self._http_client_factory() as client:
                posts = await self._fetch_posts(client, handle.lstrip("@"), credentials)
        except Exception as exc:
            self.breaker.record_failure()
            logger.warning(
                "%s fetch for '%s' failed: %s. Circuit breaker: %d/%d failures",
                self.platform,
                handle,
                exc,
                self.breaker.failure_count,
                CircuitBreaker.FAILURE_THRESHOLD,
            )
            return []

        self.breaker.record_success()
        return posts[:MAX_POSTS]

    async def _fetch_posts(
        self, client: httpx.AsyncClient, handle: str, credentials: Credentials
    ) -> list[Post]:
        raise NotImplementedError

    @staticmethod
    async def _get_json(client: httpx.AsyncClient, url: str, **kwargs: Any) -> dict:
        response = await client.get(url, **kwargs)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise SourceFetchError(
                "Malformed platform response",
                detail=f"Expected JSON object from {url}, got {type(payload).__name__}",
            )
        return payload


class LinkedInMonitor(SourceMonitor):
    """LinkedIn UGC posts for a member or organization vanity name."""

    platform = "linkedin"
    API_BASE = "https://api.linkedin.com/v2"

    async def _fetch_posts(self, client, handle, credentials):
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "X-Restli-Protocol-Version": "2.0.0",
        }
        org = await self._get_json(
            client,
            f"{self.API_BASE}/organizations",
            params={"q": "vanityName", "vanityName": handle},
            headers=headers,
        )
        elements = org.get("elements") or []
        if not elements:
            raise SourceFetchError(
                "LinkedIn organization not found", detail=f"vanityName={handle}"
            )
        author = f"urn:li:organization:{elements[0]['id']}"
        data = await self._get_json(
            client,
            f"{self.API_BASE}/ugcPosts",
            params={"q": "authors", "authors": f"List({author})", "count": MAX_POSTS},
            headers=headers,
        )
        return [self._to_post(element, handle) for element in data.get("elements", [])]

    def _to_post(self, element: dict, handle: str) -> Post:
        share = (element.get("specificContent") or {}).get(
            "com.linkedin.ugc.ShareContent", {}
        )
        text = (share.get("shareCommentary") or {}).get("text", "")
        media = [m.get("originalUrl", "") for m in share.get("media", []) if m.get("originalUrl")]
        stats = element.get("statistics") or {}
        return Post(
            id=str(element.get("id")),
            platform=self.platform,
            content=text,
            author=handle,
            published_at=_parse_timestamp((element.get("created") or {}).get("time")),
            engagement=EngagementMetrics(
                likes=stats.get("numLikes", 0),
                shares=stats.get("numShares", 0),
                comments=stats.get("numComments", 0),
                views=stats.get("impressionCount", 0),
            ),
            media_urls=media,
            hashtags=extract_hashtags(text),
            mentions=extract_mentions(text),
            url=f"https://linkedin.com/feed/update/{element.get('id')}",
        )


class TwitterMonitor(SourceMonitor):
    """Twitter API v2 user timeline."""

    platform = "twitter"
    API_BASE = "https://api.twitter.com/2"

    async def _fetch_posts(self, client, handle, credentials):
        headers = {"Authorization": f"Bearer {credentials.access_token}"}
        user = await self._get_json(
            client, f"{self.API_BASE}/users/by/username/{handle}", headers=headers
        )
        user_id = (user.get("data") or {}).get("id")
        if not user_id:
            raise SourceFetchError("Twitter user not found", detail=f"username={handle}")

        data = await self._get_json(
            client,
            f"{self.API_BASE}/users/{user_id}/tweets",
            params={
                "max_results": MAX_POSTS,
                "tweet.fields": "created_at,public_metrics,lang",
                "expansions": "attachments.media_keys",
                "media.fields": "url,type",
            },
            headers=headers,
        )
        media_by_key = {
            m["media_key"]: m.get("url", "")
            for m in (data.get("includes") or {}).get("media", [])
        }
        posts = []
        for tweet in data.get("data") or []:
            metrics = tweet.get("public_metrics") or {}
            keys = (tweet.get("attachments") or {}).get("media_keys", [])
            text = tweet.get("text", "")
            posts.append(
                Post(
                    id=str(tweet["id"]),
                    platform=self.platform,
                    content=text,
                    author=handle,
                    published_at=_parse_timestamp(tweet.get("created_at")),
                    engagement=EngagementMetrics(
                        likes=metrics.get("like_count", 0),
                        shares=metrics.get("retweet_count", 0),
                        comments=metrics.get("reply_count", 0),
                        views=metrics.get("impression_count", 0),
                    ),
                    media_urls=[media_by_key[k] for k in keys if media_by_key.get(k)],
                    hashtags=extract_hashtags(text),
                    mentions=extract_mentions(text),
                    url=f"https://twitter.com/{handle}/status/{tweet['id']}",
                )
            )
        return posts


class FacebookMonitor(SourceMonitor):
    """Facebook Graph API page posts."""

    platform = "facebook"
    API_BASE = "https://graph.facebook.com/v18.0"
    POST_FIELDS = (
        "id,message,created_time,shares,likes.summary(true),"
        "comments.summary(true),permalink_url,full_picture"
    )

    async def _fetch_posts(self, client, handle, credentials):
        data = await self._get_json(
            client,
            f"{self.API_BASE}/{handle}/posts",
            params={
                "fields": self.POST_FIELDS,
                "limit": MAX_POSTS,
                "access_token": credentials.access_token,
            },
        )
        posts = []
        for item in data.get("data", []):
            text = item.get("message", "")
            posts.append(
                Post(
                    id=str(item["id"]),
                    platform=self.platform,
                    content=text,
                    author=handle,
                    published_at=_parse_timestamp(item.get("created_time")),
                    engagement=EngagementMetrics(
                        likes=((item.get("likes") or {}).get("summary") or {}).get("total_count", 0),
                        shares=(item.get("shares") or {}).get("count", 0),
                        comments=((item.get("comments") or {}).get("summary") or {}).get(
                            "total_count", 0
                        ),
                    ),
                    media_urls=[item["full_picture"]] if item.get("full_picture") else [],
                    hashtags=extract_hashtags(text),
                    mentions=extract_mentions(text),
                    url=item.get("permalink_url") or f"https://facebook.com/{handle}/posts/{item['id']}",
                )
            )
        return posts


class InstagramMonitor(SourceMonitor):
    """Instagram Graph API business discovery for a competitor username.

    Requires the monitoring account's business id (credentials.account_id).
    """

    platform = "instagram"
    API_BASE = "https://graph.facebook.com/v18.0"
    MEDIA_FIELDS = (
        "id,caption,media_type,media_url,permalink,timestamp,like_count,comments_count"
    )

    async def _fetch_posts(self, client, handle, credentials):
        if not credentials.account_id:
            raise SourceFetchError(
                "Instagram business account id missing",
                suggestion="Set RIVALWATCH_INSTAGRAM_BUSINESS_ACCOUNT_ID or connect an account",
            )
        data = await self._get_json(
            client,
            f"{self.API_BASE}/{credentials.account_id}",
            params={
                "fields": f"business_discovery.username({handle}){{media.limit({MAX_POSTS}){{{self.MEDIA_FIELDS}}}}}",
                "access_token": credentials.access_token,
            },
        )
        media = ((data.get("business_discovery") or {}).get("media") or {}).get("data", [])
        posts = []
        for item in media:
            caption = item.get("caption", "")
            posts.append(
                Post(
                    id=str(item["id"]),
                    platform=self.platform,
                    content=caption,
                    author=handle,
                    published_at=_parse_timestamp(item.get("timestamp")),
                    engagement=EngagementMetrics(
                        likes=item.get("like_count", 0),
                        comments=item.get("comments_count", 0),
                    ),
                    media_urls=[item["media_url"]] if item.get("media_url") else [],
                    hashtags=extract_hashtags(caption),
                    mentions=extract_mentions(caption),
                    url=item.get("permalink") or f"https://instagram.com/p/{item['id']}",
                )
            )
        return posts


class YouTubeMonitor(SourceMonitor):
    """YouTube Data API v3: latest channel uploads with statistics."""

    platform = "youtube"
    API_BASE = "https://www.googleapis.com/youtube/v3"

    async def _fetch_posts(self, client, handle, credentials):
        key = credentials.access_token
        channels = await self._get_json(
            client,
            f"{self.API_BASE}/channels",
            params={"part": "id", "forHandle": handle, "key": key},
        )
        items = channels.get("items") or []
        if not items:
            raise SourceFetchError("YouTube channel not found", detail=f"handle={handle}")
        channel_id = items[0]["id"]

        search = await self._get_json(
            client,
            f"{self.API_BASE}/search",
            params={
                "part": "snippet",
                "channelId": channel_id,
                "type": "video",
                "order": "date",
                "maxResults": MAX_POSTS,
                "key": key,
            },
        )
        videos = search.get("items") or []
        video_ids = [v["id"]["videoId"] for v in videos if (v.get("id") or {}).get("videoId")]
        stats: dict[str, dict] = {}
        if video_ids:
            stats_data = await self._get_json(
                client,
                f"{self.API_BASE}/videos",
                params={"part": "statistics", "id": ",".join(video_ids), "key": key},
            )
            stats = {v["id"]: v.get("statistics", {}) for v in stats_data.get("items", [])}

        posts = []
        for video in videos:
            video_id = (video.get("id") or {}).get("videoId")
            if not video_id:
                continue
            snippet = video.get("snippet") or {}
            s = stats.get(video_id, {})
            posts.append(
                Post(
                    id=video_id,
                    platform=self.platform,
                    content=snippet.get("title", ""),
                    author=handle,
                    published_at=_parse_timestamp(snippet.get("publishedAt")),
                    engagement=EngagementMetrics(
                        likes=int(s.get("likeCount", 0)),
                        comments=int(s.get("commentCount", 0)),
                        views=int(s.get("viewCount", 0)),
                    ),
                    media_urls=[f"https://youtube.com/watch?v={video_id}"],
                    hashtags=extract_hashtags(snippet.get("description", "")),
                    url=f"https://youtube.com/watch?v={video_id}",
                )
            )
        return posts


# ---------- Registry ----------


class SourceMonitorRegistry:
    """Map of platform id -> SourceMonitor, used by the job processor to dispatch."""

    def __init__(self, monitors: Iterable[SourceMonitor] = ()) -> None:
        self._monitors: dict[str, SourceMonitor] = {}
        for monitor in monitors:
            self.register(monitor)

    def register(self, monitor: SourceMonitor) -> None:
        self._monitors[monitor.platform] = monitor
        logger.info("Registered source monitor: %s", monitor.platform)

    def get(self, platform: str) -> SourceMonitor:
        """Return the monitor for platform.

        Raises:
            UnsupportedPlatformError: No monitor is registered for platform.
        """
        try:
            return self._monitors[platform]
        except KeyError:
            raise UnsupportedPlatformError(
                f"Unsupported platform: {platform}",
                detail=f"Registered platforms: {', '.join(sorted(self._monitors)) or 'none'}",
            ) from None

    async def fetch(self, platform: str, handle: str, user_id: Optional[str] = None) -> list[Post]:
        """Dispatch to the platform's monitor. Raises only for unknown platforms."""
        return await self.get(platform).fetch(handle, user_id)

    @property
    def platforms(self) -> list[str]:
        return sorted(self._monitors)

    def get_health_report(self) -> dict[str, str]:
        """Circuit breaker status per platform."""
        report = {}
        for name, monitor in self._monitors.items():
            breaker = monitor.breaker
            if breaker.is_open():
                status = f"OPEN (failures={breaker.failure_count})"
            elif breaker.failure_count > 0:
                status = f"DEGRADED (failures={breaker.failure_count})"
            else:
                status = "HEALTHY"
            report[name] = status
        return report


def build_default_registry(
    session_factory: Optional[Callable[[], Session]] = None,
    settings: Optional[Settings] = None,
    http_client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
) -> SourceMonitorRegistry:
    """Registry with every built-in platform monitor sharing one token resolver."""
    settings = settings or get_settings()
    tokens = TokenResolver(session_factory=session_factory, settings=settings)
    return SourceMonitorRegistry(
        monitor_cls(
            tokens=tokens,
            http_client_factory=http_client_factory,
            timeout=settings.http_timeout_seconds,
        )
        for monitor_cls in (
            LinkedInMonitor,
            TwitterMonitor,
            FacebookMonitor,
            InstagramMonitor,
            YouTubeMonitor,
        )
    )
