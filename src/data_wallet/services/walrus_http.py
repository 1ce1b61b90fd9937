"""
Walrus HTTP Blob Store

Writes through a Walrus publisher and reads through an aggregator:

    PUT {publisher}/v1/blobs?epochs=N&deletable=true&send_object_to=0x...
    GET {aggregator}/v1/blobs/{blob_id}

The publisher pays for storage; the resulting Blob object is transferred
to the uploading identity's address.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from ..core.errors import BlobNotFound, TransportError
from .base import BlobStore, StorageCost, estimate_storage_cost

if TYPE_CHECKING:
    from ..core.identity import Identity

logger = logging.getLogger(__name__)


def extract_blob_id(body: Dict[str, Any]) -> str:
    """Blob id from a publisher response (new or already certified)"""
    if "newlyCreated" in body:
        return body["newlyCreated"]["blobObject"]["blobId"]
    if "alreadyCertified" in body:
        return body["alreadyCertified"]["blobId"]
    raise TransportError(f"Unexpected publisher response: {sorted(body)}")


class WalrusHttpStore(BlobStore):
    """
    Walrus publisher/aggregator client.

    Usage:
        async with WalrusHttpStore(publisher_url, aggregator_url) as store:
            blob_id = await store.write_blob(data, epochs=1, deletable=True, owner=owner)
            data = await store.read_blob(blob_id)
    """

    def __init__(
        self,
        publisher_url: Optional[str],
        aggregator_url: str,
        timeout: float = 60.0,
        storage_price_per_unit: int = 11_000,
        write_price_per_unit: int = 20_000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.publisher_url = publisher_url.rstrip("/") if publisher_url else None
        self.aggregator_url = aggregator_url.rstrip("/")
        self.storage_price_per_unit = storage_price_per_unit
        self.write_price_per_unit = write_price_per_unit
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def storage_cost(self, size: int, epochs: int) -> StorageCost:
        return estimate_storage_cost(
            size, epochs, self.storage_price_per_unit, self.write_price_per_unit
        )

    async def write_blob(
        self,
        data: bytes,
        epochs: int,
        deletable: bool,
        owner: Identity,
    ) -> str:
        if not self.publisher_url:
            raise TransportError("No Walrus publisher configured for this network")

        params = {"epochs": epochs, "send_object_to": owner.address}
        if deletable:
            params["deletable"] = "true"

        try:
            response = await self.client.put(
                f"{self.publisher_url}/v1/blobs",
                params=params,
                content=data,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"Publisher rejected blob: HTTP {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"Publisher unreachable: {e}") from e

        blob_id = extract_blob_id(body)
        logger.debug(f"Publisher stored {len(data)} bytes as {blob_id}")
        return blob_id

    async def read_blob(self, blob_id: str) -> bytes:
        try:
            response = await self.client.get(f"{self.aggregator_url}/v1/blobs/{blob_id}")
        except httpx.HTTPError as e:
            raise TransportError(f"Aggregator unreachable: {e}") from e

        if response.status_code == 404:
            raise BlobNotFound(blob_id)
        if response.is_error:
            raise TransportError(
                f"Aggregator returned HTTP {response.status_code} for {blob_id}",
                status_code=response.status_code,
            )
        return response.content
