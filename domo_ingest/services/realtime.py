"""External "show X" effects: realtime broadcasts to the demo experience page.

The experience page subscribes to the Supabase Realtime channel
``demo-{demo_id}``. Messages are pushed through the Realtime REST broadcast
endpoint, which needs no websocket session on the server.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from domo_ingest.core.config import settings
from domo_ingest.core.error_tracker import ErrorTracker
from domo_ingest.models.events import BroadcastEffect, PlayVideoEffect
from domo_ingest.services.demo_lookup import DemoLookup

logger = logging.getLogger(__name__)


def demo_channel(demo_id: str) -> str:
    return f"demo-{demo_id}"


class RealtimeBroadcaster:
    """Posts broadcast messages to Supabase Realtime.

    Args:
        base_url: Supabase project URL.
        api_key: Service-role key.
        client: Optional shared httpx.AsyncClient (tests pass a mock transport).
        enabled: When False, broadcasts are logged and skipped.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        enabled: bool = True,
        timeout: float = 5.0,
    ) -> None:
        self._endpoint = f"{base_url.rstrip('/')}/realtime/v1/api/broadcast"
        self._api_key = api_key
        self._client = client
        self._enabled = enabled
        self._timeout = timeout

    @classmethod
    def from_settings(cls) -> RealtimeBroadcaster:
        return cls(
            base_url=settings.SUPABASE_URL,
            api_key=settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            enabled=settings.REALTIME_BROADCAST_ENABLED,
            timeout=settings.REALTIME_BROADCAST_TIMEOUT_SECONDS,
        )

    async def broadcast(self, demo_id: str, event: str, payload: dict[str, Any]) -> bool:
        """Send one broadcast message.

        Returns:
            True if the Realtime API accepted the message.
        """
        if not self._enabled:
            logger.info(
                "Realtime broadcast disabled - skipping",
                extra={"demo_id": demo_id, "broadcast_event": event},
            )
            return False

        body = {
            "messages": [
                {"topic": demo_channel(demo_id), "event": event, "payload": payload},
            ]
        }
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        try:
            if self._client is not None:
                response = await self._client.post(self._endpoint, json=body, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._endpoint, json=body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "Realtime broadcast failed",
                extra={"demo_id": demo_id, "broadcast_event": event, "error": str(e)},
            )
            ErrorTracker.get_instance().record_error(
                stage="effect", error_type=type(e).__name__, message=str(e), demo_id=demo_id
            )
            return False

        logger.info(
            "Realtime broadcast sent",
            extra={"demo_id": demo_id, "broadcast_event": event},
        )
        return True


class EffectRunner:
    """Executes handler effects after the writes for an event have been made."""

    def __init__(self, db: Any, broadcaster: RealtimeBroadcaster, lookup: DemoLookup) -> None:
        self._db = db
        self._broadcaster = broadcaster
        self._lookup = lookup

    async def run(self, effect: BroadcastEffect | PlayVideoEffect) -> bool:
        if isinstance(effect, PlayVideoEffect):
            return await self._play_video(effect)
        return await self._broadcaster.broadcast(effect.demo_id, effect.event, effect.payload)

    async def _play_video(self, effect: PlayVideoEffect) -> bool:
        video = await self._lookup.find_demo_video(effect.demo_id, effect.title)
        if not video or not video.get("storage_url"):
            logger.warning(
                "Requested video not found in demo",
                extra={"demo_id": effect.demo_id, "video_title": effect.title},
            )
            return False

        signed_url = self._create_signed_url(video["storage_url"])
        if not signed_url:
            return False

        return await self._broadcaster.broadcast(
            effect.demo_id, "play_video", {"url": signed_url, "title": effect.title}
        )

    def _create_signed_url(self, storage_path: str) -> str | None:
        try:
            result = self._db.storage.from_(settings.DEMO_VIDEO_BUCKET).create_signed_url(
                storage_path, settings.SIGNED_URL_TTL_SECONDS
            )
        except Exception as e:
            logger.warning(
                "Failed to sign video URL",
                extra={"storage_path": storage_path, "error": str(e)},
            )
            return None
        # storage3 has returned both spellings across releases
        return result.get("signedURL") or result.get("signedUrl")
