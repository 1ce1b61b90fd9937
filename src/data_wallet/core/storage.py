"""
Blob Storage

Uploads with a fixed retry ceiling and downloads with a single attempt.
Downloads are not retried so that a missing blob surfaces immediately.

Several encrypted objects are stored together as one blob: a UTF-8 JSON
object mapping recipient name to the object's bytes as an array of
integers.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Dict, Mapping, Optional

from .errors import UploadFailed

if TYPE_CHECKING:
    from ..services.base import BlobStore
    from .identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_RETRY_CEILING = 3


def combine(objects: Mapping[str, bytes]) -> bytes:
    """Serialize named encrypted objects into one blob"""
    return json.dumps({name: list(data) for name, data in objects.items()}).encode("utf-8")


def split(blob: bytes) -> Dict[str, bytes]:
    """
    Inverse of combine().

    Raises:
        ValueError: The blob is not a mapping of names to byte arrays
    """
    try:
        parsed = json.loads(blob.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Blob is not a combined object document: {e}") from e

    if not isinstance(parsed, dict):
        raise ValueError("Combined blob must be a JSON object")

    objects = {}
    for name, values in parsed.items():
        if not isinstance(values, list):
            raise ValueError(f"Entry '{name}' is not a byte array")
        try:
            objects[name] = bytes(values)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Entry '{name}' is not a byte array: {e}") from e
    return objects


class BlobStorageClient:
    """
    Blob Storage Client with an upload retry policy.

    Usage:
        storage = BlobStorageClient(store, retry_ceiling=3)
        blob_id = await storage.upload(data, owner, epochs=1)
        data = await storage.download(blob_id)
    """

    def __init__(
        self,
        store: "BlobStore",
        retry_ceiling: int = DEFAULT_RETRY_CEILING,
        deletable: bool = True,
    ):
        if retry_ceiling < 1:
            raise ValueError("retry_ceiling must be at least 1")
        self.store = store
        self.retry_ceiling = retry_ceiling
        self.deletable = deletable

    async def upload(self, data: bytes, identity: "Identity", epochs: int = 1) -> str:
        """
        Store data, retrying immediately on failure.

        Raises:
            UploadFailed: All retry_ceiling attempts failed; carries the last error
        """
        cost = await self.store.storage_cost(len(data), epochs)
        logger.info(
            f"Storage cost estimate for {len(data)} bytes over {epochs} epoch(s): "
            f"{cost.total} FROST (encoded size {cost.encoded_size} bytes)"
        )

        last_error: Optional[BaseException] = None
        for attempt in range(1, self.retry_ceiling + 1):
            try:
                blob_id = await self.store.write_blob(
                    data,
                    epochs=epochs,
                    deletable=self.deletable,
                    owner=identity,
                )
                logger.info(f"Blob {blob_id} stored on attempt {attempt}")
                return blob_id
            except Exception as e:
                last_error = e
                logger.warning(f"write_blob attempt {attempt}/{self.retry_ceiling} failed: {e}")

        raise UploadFailed(self.retry_ceiling, last_error)

    async def download(self, blob_id: str) -> bytes:
        """
        Single attempt.

        Raises:
            BlobNotFound: The blob does not exist
            TransportError: The storage network could not be reached
        """
        data = await self.store.read_blob(blob_id)
        logger.info(f"Read blob {blob_id} ({len(data)} bytes)")
        return data
