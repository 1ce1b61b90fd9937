"""
Seal Bridge Client

Connects to a sidecar process that hosts the Seal SDK (threshold
encryption only ships as a TypeScript client). The sidecar exposes:

    GET  /status                 {"ready": bool, "network": str, "keyServers": [ids]}
    POST /key-servers/verify     {"serverObjectIds": [...]} -> {"verified": [...]}
    POST /encrypt                {"threshold", "packageId", "id", "data", "serverObjectIds"}
                                 -> {"encryptedObject", "key"}
    POST /decrypt                {"data", "sessionKey", "txBytes", "serverObjectIds"}
                                 -> {"data"}

Binary fields travel as base64. Denials come back as 403, expired session
keys as 410.

Architecture:
    Python wallet <-> SealBridgeClient <-> Bridge (Node.js, @mysten/seal) <-> key servers
"""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import aiohttp

from ..core.errors import Expired, TransportError, Unauthorized
from .base import EncryptionService

if TYPE_CHECKING:
    from ..core.session import SessionCredential

logger = logging.getLogger(__name__)

DENIED_ERRORS = {"NoAccessError", "InvalidPTBError", "InvalidUserSignatureError"}
EXPIRED_ERRORS = {"ExpiredSessionKeyError"}


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class SealBridgeClient(EncryptionService):
    """
    Client for the Seal SDK bridge.

    Example:
        async with SealBridgeClient("http://localhost:3100") as seal:
            servers = await seal.verify_key_servers()
            encrypted, key = await seal.encrypt(data, package_id, data_id, threshold=1)
    """

    def __init__(
        self,
        http_url: str = "http://localhost:3100",
        key_server_ids: Optional[List[str]] = None,
        timeout: float = 60.0,
    ):
        self.http_url = http_url.rstrip("/")
        self._key_server_ids = list(key_server_ids or [])
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._http_session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def connect(self) -> None:
        """Open the HTTP session and check the bridge is running"""
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession(timeout=self._timeout)

        try:
            status = await self.get_status()
        except TransportError as e:
            await self.close()
            raise TransportError(
                f"Cannot connect to Seal bridge at {self.http_url}. "
                f"Make sure the bridge is running."
            ) from e

        if not status.get("ready", False):
            logger.warning(f"Seal bridge at {self.http_url} reports not ready: {status}")
        logger.info(f"Seal bridge status: {status}")

    async def close(self) -> None:
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    # =========================================================================
    # HTTP API
    # =========================================================================

    def _session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            raise RuntimeError("Not connected. Call connect() first.")
        return self._http_session

    @staticmethod
    def _raise_for_error(path: str, status: int, body: Dict[str, Any]) -> None:
        error = body.get("error") or {}
        if isinstance(error, str):
            error = {"message": error}
        error_type = error.get("type", "")
        message = error.get("message") or f"HTTP {status}"

        if status == 410 or error_type in EXPIRED_ERRORS:
            raise Expired(message)
        if status == 403 or error_type in DENIED_ERRORS:
            raise Unauthorized(message)
        raise TransportError(f"Seal bridge {path}: {message}", status_code=status)

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        try:
            async with self._session().request(method, f"{self.http_url}{path}", json=payload) as resp:
                try:
                    body = await resp.json()
                except (aiohttp.ContentTypeError, ValueError):
                    body = {"error": {"message": await resp.text()}}
                if resp.status >= 400:
                    self._raise_for_error(path, resp.status, body)
                return body
        except aiohttp.ClientError as e:
            raise TransportError(f"Seal bridge {path}: {e}") from e

    async def get_status(self) -> Dict[str, Any]:
        return await self._request("GET", "/status")

    async def key_servers(self) -> List[str]:
        """Configured key servers, or the bridge's allowlist for its network"""
        if not self._key_server_ids:
            status = await self.get_status()
            self._key_server_ids = list(status.get("keyServers", []))
        return list(self._key_server_ids)

    async def verify_key_servers(self) -> List[str]:
        servers = await self.key_servers()
        body = await self._request("POST", "/key-servers/verify", {"serverObjectIds": servers})
        verified = body.get("verified", [])
        missing = sorted(set(servers) - set(verified))
        if missing:
            raise TransportError(f"Key servers failed verification: {', '.join(missing)}")
        return verified

    async def encrypt(
        self,
        data: bytes,
        package_id: str,
        data_id: bytes,
        threshold: int,
    ) -> Tuple[bytes, bytes]:
        body = await self._request(
            "POST",
            "/encrypt",
            {
                "threshold": threshold,
                "packageId": package_id,
                "id": data_id.hex(),
                "data": _b64(data),
                "serverObjectIds": await self.key_servers(),
            },
        )
        return base64.b64decode(body["encryptedObject"]), base64.b64decode(body["key"])

    async def decrypt(
        self,
        encrypted_object: bytes,
        credential: SessionCredential,
        policy_check_bytes: bytes,
    ) -> bytes:
        body = await self._request(
            "POST",
            "/decrypt",
            {
                "data": _b64(encrypted_object),
                "sessionKey": credential.export(),
                "txBytes": _b64(policy_check_bytes),
                "serverObjectIds": await self.key_servers(),
            },
        )
        return base64.b64decode(body["data"])
