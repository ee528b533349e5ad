"""
YouTube Data API v3 client.

Only the calls the stream coordinator needs: OAuth refresh, broadcast
transition/status/insert, thumbnail upload and replay unlisting. Every
failure is raised as a TransientAPIError or PermanentAPIError; transient
ones are retried a bounded number of times first.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from liverelay.config import YouTubeConfig
from liverelay.errors import APIErrorType, ExternalAPIError, PermanentAPIError, TransientAPIError, make_api_error
from liverelay.youtube.retry import RetryConfig, RetryManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CATEGORY_ID = "22"  # People & Blogs


class UnlistOutcome(str, Enum):
    UNLISTED = "unlisted"
    ALREADY_UNLISTED = "already_unlisted"
    PROCESSING = "processing"  # replay not available yet, try again later


@dataclass
class BroadcastDraft:
    """Fields of a liveBroadcasts.insert request."""

    title: str
    scheduled_start: datetime
    description: str = ""
    privacy_status: str = "unlisted"
    enable_auto_start: bool = True
    enable_auto_stop: bool = True
    tags: list[str] = field(default_factory=list)

    def to_body(self) -> dict[str, Any]:
        snippet: dict[str, Any] = {
            "title": self.title[:100],
            "description": self.description,
            "scheduledStartTime": self.scheduled_start.isoformat(),
        }
        return {
            "snippet": snippet,
            "status": {"privacyStatus": self.privacy_status, "selfDeclaredMadeForKids": False},
            "contentDetails": {
                "enableAutoStart": self.enable_auto_start,
                "enableAutoStop": self.enable_auto_stop,
                "recordFromStart": True,
                "monitorStream": {"enableMonitorStream": False},
            },
        }


class YouTubeClient:
    """
    Async client for the YouTube endpoints used by LiveRelay.

    Args:
        config: API URLs, timeout and retry settings
        http_client: Pre-built httpx client (tests pass one with a MockTransport)
    """

    def __init__(self, config: YouTubeConfig, http_client: Optional[httpx.AsyncClient] = None):
        self._config = config
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.timeout_seconds))
        self._owns_client = http_client is None
        self._retry = RetryManager(
            RetryConfig(
                max_retries=config.max_retries,
                backoff_base=config.backoff_base,
                backoff_max=config.backoff_max,
            )
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @staticmethod
    def _error_from_response(response: httpx.Response) -> ExternalAPIError:
        reason = None
        message = response.text[:500] if response.content else ""
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, dict):
                # {"error": {"code": 403, "message": "...", "errors": [{"reason": "quotaExceeded"}]}}
                message = error.get("message") or message
                errors = error.get("errors") or []
                if errors and isinstance(errors[0], dict):
                    reason = errors[0].get("reason")
                reason = reason or error.get("status")
            elif isinstance(error, str):
                # OAuth: {"error": "invalid_grant", "error_description": "..."}
                reason = error
                message = payload.get("error_description") or error

        return make_api_error(response.status_code, reason, message)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        access_token: Optional[str] = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        try:
            response = await self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientAPIError(f"Request to {url} timed out: {e}", error_type=APIErrorType.TIMEOUT)
        except httpx.TransportError as e:
            raise TransientAPIError(f"Network error calling {url}: {e}", error_type=APIErrorType.NETWORK_ERROR)

        if response.status_code >= 400:
            raise self._error_from_response(response)
        if not response.content:
            return {}
        return response.json()

    async def _call(self, operation_name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self._retry.execute_with_retry(operation, operation_name)

    def _api(self, path: str) -> str:
        return f"{self._config.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    async def refresh_access_token(self, client_id: str, client_secret: str, refresh_token: str) -> str:
        """
        Exchange a refresh token for an access token.

        Raises:
            PermanentAPIError: TOKEN_EXPIRED / INVALID_CLIENT / missing credentials
            TransientAPIError: network trouble that outlasted the retries
        """
        if not client_id or not client_secret or not refresh_token:
            raise PermanentAPIError(
                "Missing credentials: client id, client secret or refresh token is empty",
                error_type=APIErrorType.INVALID_CLIENT,
            )

        async def operation() -> str:
            data = await self._request(
                "POST",
                self._config.token_url,
                data={
                    "client_id": client_id,
                    "client_secret": client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            token = data.get("access_token")
            if not token:
                raise PermanentAPIError("Token response did not contain an access token")
            return token

        return await self._call("refresh_access_token", operation)

    # ------------------------------------------------------------------
    # Broadcasts
    # ------------------------------------------------------------------

    async def transition_broadcast(self, access_token: str, broadcast_id: str, broadcast_status: str) -> Optional[str]:
        """
        Move a broadcast to `testing`, `live` or `complete`.

        Returns:
            The broadcast's lifeCycleStatus after the transition

        Raises:
            PermanentAPIError: with error_type REDUNDANT_TRANSITION when the
                broadcast already is in the requested state
        """

        async def operation() -> Optional[str]:
            data = await self._request(
                "POST",
                self._api("liveBroadcasts/transition"),
                access_token=access_token,
                params={"broadcastStatus": broadcast_status, "id": broadcast_id, "part": "id,status"},
            )
            return (data.get("status") or {}).get("lifeCycleStatus")

        return await self._call(f"transition_broadcast({broadcast_status})", operation)

    async def get_broadcast_status(self, access_token: str, broadcast_id: str) -> Optional[str]:
        """lifeCycleStatus of a broadcast, None if it does not exist."""

        async def operation() -> Optional[str]:
            data = await self._request(
                "GET",
                self._api("liveBroadcasts"),
                access_token=access_token,
                params={"part": "status", "id": broadcast_id},
            )
            items = data.get("items") or []
            if not items:
                return None
            return (items[0].get("status") or {}).get("lifeCycleStatus")

        return await self._call("get_broadcast_status", operation)

    async def create_broadcast(self, access_token: str, draft: BroadcastDraft) -> dict[str, Any]:
        """Insert a broadcast; returns the API resource (id, snippet, status)."""

        async def operation() -> dict[str, Any]:
            return await self._request(
                "POST",
                self._api("liveBroadcasts"),
                access_token=access_token,
                params={"part": "snippet,status,contentDetails"},
                json=draft.to_body(),
            )

        broadcast = await self._call("create_broadcast", operation)
        logger.info(f"Created broadcast {broadcast.get('id')} '{draft.title}'")
        return broadcast

    async def set_thumbnail(self, access_token: str, video_id: str, image: bytes, mime_type: str = "image/jpeg") -> None:
        if not image:
            raise PermanentAPIError("Thumbnail image is empty")

        async def operation() -> dict[str, Any]:
            return await self._request(
                "POST",
                f"{self._config.upload_base_url.rstrip('/')}/thumbnails/set",
                access_token=access_token,
                params={"videoId": video_id, "uploadType": "media"},
                content=image,
                headers={"Content-Type": mime_type},
            )

        await self._call("set_thumbnail", operation)

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    async def unlist_video(self, access_token: str, video_id: str) -> UnlistOutcome:
        """
        Set a video's privacy to unlisted, keeping its other metadata.

        A video that is not listed yet or still processing returns
        PROCESSING rather than raising; the caller decides when to retry.
        """

        async def fetch() -> dict[str, Any]:
            return await self._request(
                "GET",
                self._api("videos"),
                access_token=access_token,
                params={"part": "snippet,status", "id": video_id},
            )

        data = await self._call("videos.list", fetch)
        items = data.get("items") or []
        if not items:
            logger.info(f"Video {video_id} not available yet")
            return UnlistOutcome.PROCESSING

        current = items[0]
        snippet = current.get("snippet") or {}
        status = current.get("status") or {}

        if status.get("privacyStatus") == "unlisted":
            return UnlistOutcome.ALREADY_UNLISTED
        if status.get("uploadStatus") == "processing":
            logger.info(f"Video {video_id} is still processing")
            return UnlistOutcome.PROCESSING

        body_snippet: dict[str, Any] = {
            "title": snippet.get("title") or "Untitled",
            "description": snippet.get("description") or "",
            "categoryId": snippet.get("categoryId") or DEFAULT_CATEGORY_ID,
        }
        if isinstance(snippet.get("tags"), list):
            body_snippet["tags"] = snippet["tags"]

        body_status: dict[str, Any] = {
            "privacyStatus": "unlisted",
            "selfDeclaredMadeForKids": status.get("selfDeclaredMadeForKids", False),
        }
        for key in ("embeddable", "publicStatsViewable"):
            if key in status:
                body_status[key] = status[key]

        async def update() -> dict[str, Any]:
            return await self._request(
                "PUT",
                self._api("videos"),
                access_token=access_token,
                params={"part": "snippet,status"},
                json={"id": video_id, "snippet": body_snippet, "status": body_status},
            )

        await self._call("videos.update", update)
        logger.info(f"Video {video_id} unlisted")
        return UnlistOutcome.UNLISTED
