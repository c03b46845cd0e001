"""Push gateway client for out-of-band device notifications.

Delivery is best effort: every address is attempted independently and the
outcome is reported per address. Nothing in this module raises because a
device could not be reached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from relay_stage.core.settings import settings

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 50


@dataclass(frozen=True)
class PushConfig:
    """Immutable configuration for push delivery."""

    base_url: str | None
    api_key: str | None
    timeout_seconds: float

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)


def load_push_config() -> PushConfig:
    """Build configuration object from global settings."""
    return PushConfig(
        base_url=settings.push_gateway_url,
        api_key=settings.push_gateway_api_key,
        timeout_seconds=float(settings.push_timeout_seconds),
    )


def preview(text: str | None, *, has_attachments: bool = False) -> str:
    """Return the notification body preview for a message."""
    if not text:
        return "[Attachment]" if has_attachments else ""
    if len(text) > PREVIEW_LENGTH:
        return f"{text[:PREVIEW_LENGTH]}..."
    return text


class PushGateway:
    """HTTP client wrapper for the push notification gateway."""

    def __init__(
        self,
        config: PushConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or load_push_config()
        self._client = client
        self._client_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                headers = {}
                if self.config.api_key:
                    headers["Authorization"] = f"Bearer {self.config.api_key}"
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url or "",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers=headers,
                )
        return self._client

    async def notify(
        self,
        addresses: Iterable[str],
        title: str,
        body: str,
        data: Mapping[str, Any] | None = None,
    ) -> dict[str, bool]:
        """Send one notification to each address and report per-address success."""
        targets = list(dict.fromkeys(addresses))
        if not targets:
            return {}
        if not self.enabled:
            logger.debug("Push gateway disabled; skipping %d address(es)", len(targets))
            return {address: False for address in targets}

        client = await self._ensure_client()
        payload_data = {key: str(value) for key, value in (data or {}).items()}
        outcomes = await asyncio.gather(
            *(self._send_one(client, address, title, body, payload_data) for address in targets)
        )
        results = dict(zip(targets, outcomes, strict=True))
        failed = sum(1 for ok in results.values() if not ok)
        if failed:
            logger.warning("Push delivery failed for %d of %d address(es)", failed, len(targets))
        return results

    async def _send_one(
        self,
        client: httpx.AsyncClient,
        address: str,
        title: str,
        body: str,
        data: dict[str, str],
    ) -> bool:
        payload = {
            "token": address,
            "notification": {"title": title, "body": body},
            "data": data,
        }
        try:
            response = await client.post("/send", json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Push request failed: %s", exc)
            return False
        if response.is_success:
            return True
        logger.warning("Push gateway rejected address with status %s", response.status_code)
        return False

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _PushGatewaySingleton:
    """Singleton wrapper for PushGateway."""

    _instance: PushGateway | None = None

    @classmethod
    def get_instance(cls) -> PushGateway:
        if cls._instance is None:
            cls._instance = PushGateway()
        return cls._instance


def get_push_gateway() -> PushGateway:
    """Return a singleton push gateway instance."""
    return _PushGatewaySingleton.get_instance()
