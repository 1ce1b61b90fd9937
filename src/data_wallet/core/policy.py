"""
Policy Registry

Creates on-chain whitelists and adds addresses to them through the
`access_policy` Move module:

- create_whitelist_entry()          -> Whitelist (shared) + Cap (owned)
- add(whitelist, cap, address)      Cap must govern the whitelist
- seal_approve(id, whitelist)       aborts unless the sender is listed

Created objects are found by exact struct tag, keyed by PolicyObjectType.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, List, NamedTuple, Optional

from .bcs import address_to_bytes, normalize_address
from .errors import ResourceNotFound, TransactionFailed

if TYPE_CHECKING:
    from ..services.base import ChainClient, CreatedObject, TransactionResult
    from .identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_MODULE = "access_policy"


class PolicyObjectType(str, Enum):
    """Objects the access_policy module creates"""
    WHITELIST = "Whitelist"
    CAP = "Cap"


def parse_struct_tag(object_type: str) -> tuple[str, str, str]:
    """Split 'pkg::module::Name<...>' into normalized (pkg, module, name)"""
    base = object_type.split("<", 1)[0]
    parts = base.split("::")
    if len(parts) != 3:
        raise ValueError(f"Not a struct tag: {object_type!r}")
    package, module, name = parts
    return normalize_address(package), module, name


@dataclass(frozen=True)
class PolicyTuple:
    """(package id, whitelist id): the scope of an encryption"""
    package_id: str
    whitelist_id: str

    @property
    def data_id(self) -> bytes:
        """Identity under which data is encrypted: the whitelist id bytes"""
        return address_to_bytes(self.whitelist_id)


class Whitelist(NamedTuple):
    whitelist_id: str
    cap_id: str


class PolicyRegistry:
    """
    Policy Registry Client.

    Usage:
        registry = PolicyRegistry(chain, package_id)
        whitelist_id, cap_id = await registry.create_whitelist(owner)
        await registry.add_address(owner, whitelist_id, cap_id, agent.address)
    """

    def __init__(
        self,
        chain: "ChainClient",
        package_id: str,
        module_name: str = DEFAULT_MODULE,
        gas_budget: int = 10_000_000,
    ):
        self.chain = chain
        self.package_id = normalize_address(package_id)
        self.module_name = module_name
        self.gas_budget = gas_budget

    def target(self, function: str) -> str:
        return f"{self.package_id}::{self.module_name}::{function}"

    def struct_tag(self, object_type: PolicyObjectType) -> str:
        return f"{self.package_id}::{self.module_name}::{object_type.value}"

    def policy_tuple(self, whitelist_id: str) -> PolicyTuple:
        return PolicyTuple(self.package_id, normalize_address(whitelist_id))

    def find_created(
        self,
        created: List["CreatedObject"],
        object_type: PolicyObjectType,
        digest: Optional[str] = None,
    ) -> str:
        """
        Locate the id of a created object of the given type.

        Raises:
            ResourceNotFound: No created object has exactly this struct tag
        """
        wanted = (self.package_id, self.module_name, object_type.value)
        for obj in created:
            try:
                if parse_struct_tag(obj.object_type) == wanted:
                    return normalize_address(obj.object_id)
            except ValueError:
                continue
        raise ResourceNotFound(self.struct_tag(object_type), digest)

    async def _execute(self, identity: "Identity", function: str, arguments: list) -> "TransactionResult":
        result = await self.chain.execute_move_call(
            identity,
            self.target(function),
            arguments,
            self.gas_budget,
        )
        if not result.success:
            raise TransactionFailed(result.digest, result.error or "execution failed")

        effects = await self.chain.wait_for_transaction(result.digest)
        if not effects.success:
            raise TransactionFailed(effects.digest, effects.error or "execution failed")
        return effects

    async def create_whitelist(self, identity: "Identity") -> Whitelist:
        """
        Create a whitelist and the capability governing it.

        Raises:
            ResourceNotFound: The transaction succeeded without creating both
                objects. Not retried; chain state is ambiguous.
            TransactionFailed: The transaction was rejected or aborted
        """
        logger.info(f"Creating whitelist signed by {identity.name} ({identity.address})")
        effects = await self._execute(identity, "create_whitelist_entry", [])

        whitelist_id = self.find_created(effects.created, PolicyObjectType.WHITELIST, effects.digest)
        cap_id = self.find_created(effects.created, PolicyObjectType.CAP, effects.digest)

        logger.info(f"Whitelist {whitelist_id} created with cap {cap_id} (tx {effects.digest})")
        return Whitelist(whitelist_id, cap_id)

    async def add_address(
        self,
        identity: "Identity",
        whitelist_id: str,
        cap_id: str,
        address: str,
    ) -> None:
        """Add an address to a whitelist; durable once this returns"""
        address = normalize_address(address)
        logger.info(f"Adding {address} to whitelist {whitelist_id}")
        effects = await self._execute(
            identity,
            "add",
            [normalize_address(whitelist_id), normalize_address(cap_id), address],
        )
        logger.debug(f"Address {address} added to {whitelist_id} (tx {effects.digest})")
