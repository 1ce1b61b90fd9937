"""
Sui JSON-RPC Chain Client

Talks to a Sui full node. Move calls are built by the node
(unsafe_moveCall), signed locally and submitted with
sui_executeTransactionBlock. Policy checks are evaluated with
sui_devInspectTransactionBlock.
"""

from __future__ import annotations

import base64
import itertools
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

import httpx

from ..config.schema import ConfirmationConfig
from ..core.errors import ObjectNotFound, TransportError
from .base import ChainClient, CreatedObject, DevInspectResult, ObjectInfo, TransactionResult

if TYPE_CHECKING:
    from ..core.identity import Identity

logger = logging.getLogger(__name__)

EFFECTS_OPTIONS = {"showEffects": True, "showObjectChanges": True}


class RpcError(TransportError):
    """The node answered with a JSON-RPC error object"""

    def __init__(self, method: str, code: Optional[int], message: str):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed ({code}): {message}")


def _json_argument(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return list(value)
    return value


class SuiRpcClient(ChainClient):
    """
    Sui full-node client.

    Usage:
        async with SuiRpcClient("https://fullnode.testnet.sui.io:443") as chain:
            result = await chain.execute_move_call(owner, target, [], 10_000_000)
            effects = await chain.wait_for_transaction(result.digest)
    """

    def __init__(
        self,
        rpc_url: str,
        confirmation: Optional[ConfirmationConfig] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(confirmation)
        self.rpc_url = rpc_url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _call(self, method: str, params: List[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self.client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"{method}: HTTP {e.response.status_code} from {self.rpc_url}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"{method}: {e}") from e

        if "error" in body:
            error = body["error"] or {}
            raise RpcError(method, error.get("code"), error.get("message", "unknown error"))
        return body.get("result")

    @staticmethod
    def _parse_transaction(data: Dict[str, Any]) -> TransactionResult:
        status = (data.get("effects") or {}).get("status") or {}
        created = [
            CreatedObject(change["objectId"], change["objectType"])
            for change in data.get("objectChanges") or []
            if change.get("type") == "created"
        ]
        return TransactionResult(
            digest=data["digest"],
            success=status.get("status") == "success",
            error=status.get("error"),
            created=created,
        )

    async def execute_move_call(
        self,
        signer: Identity,
        target: str,
        arguments: Sequence[Any],
        gas_budget: int,
    ) -> TransactionResult:
        package, module, function = target.split("::")
        built = await self._call(
            "unsafe_moveCall",
            [
                signer.address,
                package,
                module,
                function,
                [],
                [_json_argument(a) for a in arguments],
                None,
                str(gas_budget),
                None,
            ],
        )
        tx_b64 = built["txBytes"]
        signature = signer.sign_transaction(base64.b64decode(tx_b64))

        logger.debug(f"Submitting {target} signed by {signer.address}")
        data = await self._call(
            "sui_executeTransactionBlock",
            [tx_b64, [signature], EFFECTS_OPTIONS, "WaitForLocalExecution"],
        )
        return self._parse_transaction(data)

    async def get_transaction(self, digest: str) -> Optional[TransactionResult]:
        try:
            data = await self._call("sui_getTransactionBlock", [digest, EFFECTS_OPTIONS])
        except RpcError as e:
            if "could not find" in str(e).lower() or "not found" in str(e).lower():
                return None
            raise
        if not data or not data.get("effects"):
            return None
        return self._parse_transaction(data)

    async def get_object(self, object_id: str) -> ObjectInfo:
        result = await self._call(
            "sui_getObject",
            [object_id, {"showType": True, "showOwner": True, "showContent": True}],
        )
        data = (result or {}).get("data")
        if not data:
            raise ObjectNotFound(object_id)

        owner = data.get("owner")
        initial_shared_version = None
        if isinstance(owner, dict) and "Shared" in owner:
            initial_shared_version = int(owner["Shared"]["initial_shared_version"])

        return ObjectInfo(
            object_id=data["objectId"],
            object_type=data.get("type", ""),
            version=int(data["version"]),
            initial_shared_version=initial_shared_version,
            fields=(data.get("content") or {}).get("fields", {}),
        )

    async def dev_inspect(self, sender: str, tx_kind_bytes: bytes) -> DevInspectResult:
        result = await self._call(
            "sui_devInspectTransactionBlock",
            [sender, base64.b64encode(tx_kind_bytes).decode("ascii"), None, None],
        )
        if result.get("error"):
            return DevInspectResult(success=False, error=result["error"])
        status = (result.get("effects") or {}).get("status") or {}
        if status.get("status") != "success":
            return DevInspectResult(success=False, error=status.get("error", "execution failed"))
        return DevInspectResult(success=True)
