"""
Hosted asset adapter (Mux Video).

Hands the uploaded file to Mux by public URL and polls the asset until it
is playable. Mux fetches the file itself, so the upload directory must be
reachable at <public_base_url>/temp/.

Asset status mapping:
- ready     -> READY artifact
- preparing -> keep polling; still preparing at timeout -> PROCESSING artifact
- errored   -> ProviderError
"""

import asyncio
import logging
import os
import time
from typing import Optional, TYPE_CHECKING

import httpx

from .base import SourceAdapter, AdapterType, Artifact, ArtifactStatus
from .errors import (
    ProviderError,
    ProviderAuthError,
    ProviderRateLimitError,
    SourceUnavailableError,
)

if TYPE_CHECKING:
    from ..config import Settings
    from ..jobs.models import Job, Item

logger = logging.getLogger(__name__)

PROVIDER = "mux"
STREAM_BASE = "https://stream.mux.com"
IMAGE_BASE = "https://image.mux.com"
REQUEST_TIMEOUT = 30.0


def playback_url_for(playback_id: str) -> str:
    return f"{STREAM_BASE}/{playback_id}.m3u8"


def thumbnail_url_for(playback_id: str) -> str:
    return f"{IMAGE_BASE}/{playback_id}/thumbnail.jpg"


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """
    Map an HTTP error response to the provider error taxonomy.

    Raises:
        ProviderAuthError: 401 or 403
        ProviderRateLimitError: 429
        ProviderError: Any other 4xx/5xx
    """
    status = response.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise ProviderAuthError(f"{provider} rejected credentials (HTTP {status})", provider)
    if status == 429:
        raise ProviderRateLimitError(
            f"{provider} rate limit exceeded",
            provider,
            retry_after=_retry_after(response),
        )
    raise ProviderError(f"{provider} request failed (HTTP {status}): {response.text[:200]}", provider)


class HostedAssetAdapter(SourceAdapter):
    """
    Mux Video REST adapter.

    The transport argument exists for tests (httpx.MockTransport).
    """

    def __init__(
        self,
        settings: "Settings",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._transport = transport

    @property
    def adapter_type(self) -> AdapterType:
        return AdapterType.MUX

    @property
    def name(self) -> str:
        return "Mux Video"

    @property
    def available(self) -> bool:
        return bool(self._settings.mux_token_id and self._settings.mux_token_secret)

    def _client(self) -> httpx.AsyncClient:
        if not self.available:
            raise ProviderAuthError("Mux credentials are not configured", PROVIDER)
        return httpx.AsyncClient(
            base_url=self._settings.mux_api_base,
            auth=(self._settings.mux_token_id, self._settings.mux_token_secret),
            timeout=REQUEST_TIMEOUT,
            transport=self._transport,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs):
        """Send one request and return the response's 'data' member."""
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"Mux request failed: {e}", PROVIDER) from e
        raise_for_provider_status(response, PROVIDER)
        return response.json().get("data", {})

    def public_source_url(self, source_ref: str) -> str:
        """Public URL Mux downloads the source from."""
        return f"{self._settings.base_url}/temp/{os.path.basename(source_ref)}"

    async def produce_artifact(self, job: "Job", item: "Item", index: int) -> Artifact:
        if not os.path.isfile(item.source_ref):
            raise SourceUnavailableError(item.source_ref, "file does not exist")

        input_url = self.public_source_url(item.source_ref)
        logger.info(f"[Mux] Creating asset for job {job.id} item {index} from {input_url}")

        async with self._client() as client:
            asset = await self._request(
                client,
                "POST",
                "/video/v1/assets",
                json={
                    "input": [{"url": input_url}],
                    "playback_policy": ["public"],
                },
            )
            asset_id = asset.get("id")
            if not asset_id:
                raise ProviderError("Mux did not return an asset id", PROVIDER)
            logger.info(f"[Mux] Asset created: {asset_id}")

            asset = await self._poll(client, asset_id, asset)

        playback_id = self._playback_id(asset)
        status = asset.get("status")
        if not playback_id:
            raise ProviderError(f"Mux asset {asset_id} has no public playback id", PROVIDER)

        artifact_status = ArtifactStatus.READY if status == "ready" else ArtifactStatus.PROCESSING
        if artifact_status == ArtifactStatus.PROCESSING:
            logger.warning(f"[Mux] Asset {asset_id} still {status} after poll timeout")

        return Artifact(
            status=artifact_status,
            playback_url=playback_url_for(playback_id),
            thumbnail=thumbnail_url_for(playback_id),
            external_asset_id=asset_id,
            external_playback_id=playback_id,
            promote_to_secondary=True,
        )

    async def _poll(self, client: httpx.AsyncClient, asset_id: str, asset: dict) -> dict:
        """Poll the asset until ready, errored or timeout. Returns the last asset seen."""
        deadline = time.monotonic() + self._settings.mux_poll_timeout
        while True:
            status = asset.get("status")
            if status == "ready":
                return asset
            if status == "errored":
                errors = asset.get("errors") or {}
                messages = errors.get("messages") or []
                detail = "; ".join(messages) or errors.get("type") or "unknown error"
                raise ProviderError(f"Mux asset {asset_id} errored: {detail}", PROVIDER)
            if time.monotonic() >= deadline:
                return asset
            await asyncio.sleep(self._settings.mux_poll_interval)
            asset = await self._request(client, "GET", f"/video/v1/assets/{asset_id}")
            logger.debug(f"[Mux] Asset {asset_id} status: {asset.get('status')}")

    @staticmethod
    def _playback_id(asset: dict) -> Optional[str]:
        for entry in asset.get("playback_ids") or []:
            if entry.get("policy", "public") == "public" and entry.get("id"):
                return entry["id"]
        return None

    async def check(self) -> dict:
        """List one asset to confirm the credentials work."""
        if not self.available:
            return {"provider": PROVIDER, "ok": False, "error": "Mux credentials are not configured"}
        try:
            async with self._client() as client:
                assets = await self._request(client, "GET", "/video/v1/assets", params={"limit": 1})
        except ProviderError as e:
            logger.warning(f"[Mux] Connectivity check failed: {e}")
            return {"provider": PROVIDER, "ok": False, "error": e.message}
        return {"provider": PROVIDER, "ok": True, "assets": len(assets) if isinstance(assets, list) else 0}
