"""
Hat metadata resolver.

Looks up a hat token's display name from its JSON metadata. Resolution
is best effort: any failure is logged and degrades to None.
"""

import asyncio
from typing import Any, Dict, Optional

import aiohttp
import structlog

from pinkhat_cache.core.config import settings
from pinkhat_cache.core.exceptions import MetadataResolutionError
from pinkhat_cache.services.chain_client import EventSource


logger = structlog.get_logger(__name__)

NO_HAT = 0


class HatMetadataResolver:
    """Resolves hat token ids to display names, memoising successes."""

    def __init__(
        self,
        event_source: EventSource,
        timeout: Optional[int] = None,
        ipfs_gateway: Optional[str] = None,
    ):
        self.event_source = event_source
        self.timeout = timeout or settings.metadata_timeout
        self.ipfs_gateway = ipfs_gateway or settings.ipfs_gateway
        self.logger = logger.bind(service="metadata_resolver")
        self._names: Dict[int, str] = {}

    def to_http_url(self, uri: str) -> str:
        if uri.startswith("ipfs://"):
            return self.ipfs_gateway.rstrip("/") + "/" + uri[len("ipfs://"):].lstrip("/")
        return uri

    async def fetch_metadata(self, uri: str) -> Dict[str, Any]:
        """Download a token's JSON metadata document."""
        url = self.to_http_url(uri)
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        raise MetadataResolutionError(
                            f"HTTP {response.status} fetching hat metadata",
                            {"url": url, "status": response.status}
                        )
                    document = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise MetadataResolutionError(
                f"Failed to fetch hat metadata: {e}",
                {"url": url}
            ) from e

        if not isinstance(document, dict):
            raise MetadataResolutionError("Hat metadata is not a JSON object", {"url": url})
        return document

    async def resolve_display_name(self, token_id: int) -> Optional[str]:
        """
        Resolve a hat's display name.

        Args:
            token_id: hat token id, 0 meaning no hat

        Returns:
            The metadata name, "Hat #<id>" when the document has none,
            or None when there is no hat or resolution fails
        """
        if not token_id or token_id == NO_HAT:
            return None
        if token_id in self._names:
            return self._names[token_id]

        try:
            uri = await self.event_source.get_token_uri(token_id)
            metadata = await self.fetch_metadata(uri)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.info("Could not resolve hat name", token_id=token_id, error=str(e))
            return None

        name = metadata.get("name") or f"Hat #{token_id}"
        self._names[token_id] = name
        return name
