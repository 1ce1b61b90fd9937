"""
Access-Control Scenario

The end-to-end demo as an ordered pipeline:

1. identities / key servers
2. one whitelist per agent, created and administered by the owner
3. each agent added to its own whitelist
4. each agent's JSON payload loaded and encrypted under its whitelist
5. the encrypted objects combined into one blob and uploaded
6. the blob retrieved and split
7. per agent: build a session, decrypt its own payload, and try the next
   agent's payload with the same session (must be denied)

A failed step skips only the steps that consume its result.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .config.schema import WalletConfig
from .core.encryption import EncryptionGateway, EncryptionResult
from .core.errors import PlaintextMismatch, Unauthorized
from .core.identity import Identity
from .core.pipeline import Pipeline, PipelineReport
from .core.policy import PolicyRegistry, PolicyTuple, Whitelist
from .core.session import SessionAuthorization, SessionAuthorizationBuilder
from .core.storage import BlobStorageClient, combine, split
from .network import Services

logger = logging.getLogger(__name__)

PREVIEW_CHARS = 100


def canonical_json(path: Path) -> bytes:
    """Parse a JSON document and re-serialize it compactly"""
    with open(path, "r", encoding="utf-8") as f:
        document = json.load(f)
    return json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass
class Principals:
    owner: Identity
    agents: Dict[str, Identity] = field(default_factory=dict)


@dataclass
class SealedPayload:
    agent: str
    policy: PolicyTuple
    encryption: EncryptionResult


@dataclass
class StoredBlob:
    blob_id: str
    size: int


@dataclass
class DecryptedPayload:
    agent: str
    payload: str
    plaintext: bytes

    @property
    def preview(self) -> str:
        return self.plaintext.decode("utf-8", errors="replace")[:PREVIEW_CHARS]


class AccessControlScenario:
    """
    Demo Orchestrator.

    Usage:
        async with await build_services(config) as services:
            report = await AccessControlScenario(config, services).run()
    """

    def __init__(
        self,
        config: WalletConfig,
        services: Services,
        principals: Optional[Principals] = None,
    ):
        self.config = config
        self.services = services
        self._principals = principals

        self.registry = PolicyRegistry(
            services.chain,
            config.package_id,
            config.module_name,
            gas_budget=config.gas_budget,
        )
        self.gateway = EncryptionGateway(services.encryption)
        self.sessions = SessionAuthorizationBuilder(
            services.chain,
            ttl_minutes=config.ttl_minutes,
            broadcast=config.broadcast_policy_check,
            gas_budget=config.gas_budget,
        )
        self.storage = BlobStorageClient(
            services.blob_store,
            retry_ceiling=config.retry_ceiling,
            deletable=config.deletable,
        )

    @property
    def agent_names(self) -> List[str]:
        return [a.name for a in self.config.agents]

    def load_principals(self) -> Principals:
        """Keys from config; generated where unset (local network only)"""
        if self._principals is not None:
            return self._principals

        def load(name: str, key: Optional[str]) -> Identity:
            if key:
                return Identity.from_secret_key(key, name=name)
            logger.info(f"No key configured for {name}, generating one")
            return Identity.generate(name=name)

        principals = Principals(owner=load("owner", self.config.owner_key))
        for agent in self.config.agents:
            principals.agents[agent.name] = load(agent.name, agent.key)
        self._principals = principals
        return principals

    # =========================================================================
    # Pipeline
    # =========================================================================

    def build_pipeline(self) -> Pipeline:
        pipeline = Pipeline("access-control-demo")
        names = self.agent_names

        @pipeline.step("identities", description="Set up owner and agent identities")
        async def identities(_: Mapping) -> Principals:
            principals = self.load_principals()
            logger.info(f"  owner address: {principals.owner.address}")
            for name, identity in principals.agents.items():
                logger.info(f"  {name} agent address: {identity.address}")
            return principals

        @pipeline.step("key-servers", description="Check the encryption key servers")
        async def key_servers(_: Mapping) -> List[str]:
            if self.config.network.verify_key_servers:
                return await self.gateway.verify_key_servers()
            return await self.services.encryption.key_servers()

        for name in names:
            self._add_policy_steps(pipeline, name)

        for name in names:
            self._add_encrypt_steps(pipeline, name)

        @pipeline.step(
            "upload",
            requires=["identities"] + [f"encrypt:{n}" for n in names],
            description="Combine encrypted payloads and upload the blob",
        )
        async def upload(results: Mapping) -> StoredBlob:
            blob = combine({
                n: results[f"encrypt:{n}"].encryption.encrypted_object for n in names
            })
            logger.info(f"  combined blob size: {len(blob)} bytes")
            blob_id = await self.storage.upload(
                blob, results["identities"].owner, epochs=self.config.epochs
            )
            return StoredBlob(blob_id=blob_id, size=len(blob))

        @pipeline.step("retrieve", requires=["upload"], description="Retrieve the blob")
        async def retrieve(results: Mapping) -> Dict[str, bytes]:
            objects = split(await self.storage.download(results["upload"].blob_id))
            missing = [n for n in names if n not in objects]
            if missing:
                raise ValueError(f"Retrieved blob lacks payloads for: {', '.join(missing)}")
            logger.info(
                "  extracted " + ", ".join(f"{n} ({len(objects[n])} bytes)" for n in names)
            )
            return objects

        for index, name in enumerate(names):
            other = names[(index + 1) % len(names)] if len(names) > 1 else None
            self._add_decrypt_steps(pipeline, name, other)

        return pipeline

    def _add_policy_steps(self, pipeline: Pipeline, name: str) -> None:
        @pipeline.step(
            f"whitelist:{name}",
            requires=["identities"],
            description=f"Create the {name} whitelist",
        )
        async def create_whitelist(results: Mapping) -> Whitelist:
            whitelist = await self.registry.create_whitelist(results["identities"].owner)
            logger.info(f"  {name} whitelist id: {whitelist.whitelist_id}")
            return whitelist

        @pipeline.step(
            f"authorize:{name}",
            requires=["identities", f"whitelist:{name}"],
            description=f"Add the {name} agent to its whitelist",
        )
        async def authorize(results: Mapping) -> str:
            principals = results["identities"]
            whitelist = results[f"whitelist:{name}"]
            address = principals.agents[name].address
            await self.registry.add_address(
                principals.owner, whitelist.whitelist_id, whitelist.cap_id, address
            )
            return address

    def _add_encrypt_steps(self, pipeline: Pipeline, name: str) -> None:
        agent = self.config.get_agent(name)

        @pipeline.step(f"load:{name}", description=f"Read the {name} payload")
        async def load(_: Mapping) -> bytes:
            data = canonical_json(self.config.resolve_input(agent))
            logger.info(f"  {name} data size: {len(data)} bytes")
            return data

        @pipeline.step(
            f"encrypt:{name}",
            requires=["key-servers", f"whitelist:{name}", f"load:{name}"],
            description=f"Encrypt the {name} payload",
        )
        async def encrypt(results: Mapping) -> SealedPayload:
            policy = self.registry.policy_tuple(results[f"whitelist:{name}"].whitelist_id)
            encryption = await self.gateway.encrypt(
                results[f"load:{name}"], policy, threshold=self.config.threshold
            )
            return SealedPayload(agent=name, policy=policy, encryption=encryption)

    def _add_decrypt_steps(self, pipeline: Pipeline, name: str, other: Optional[str]) -> None:
        @pipeline.step(
            f"session:{name}",
            requires=["identities", f"whitelist:{name}"],
            description=f"Build a session credential for the {name} agent",
        )
        async def session(results: Mapping) -> SessionAuthorization:
            policy = self.registry.policy_tuple(results[f"whitelist:{name}"].whitelist_id)
            return await self.sessions.build(
                results["identities"].agents[name],
                policy.package_id,
                self.config.module_name,
                policy.data_id,
                policy.whitelist_id,
            )

        @pipeline.step(
            f"decrypt:{name}",
            requires=["retrieve", f"session:{name}", f"load:{name}"],
            description=f"{name} agent decrypts {name} data",
        )
        async def decrypt(results: Mapping) -> DecryptedPayload:
            auth = results[f"session:{name}"]
            plaintext = await self.gateway.decrypt(
                results["retrieve"][name], auth.credential, auth.policy_check_bytes
            )
            if plaintext != results[f"load:{name}"]:
                raise PlaintextMismatch(f"{name} payload changed in the round trip")
            outcome = DecryptedPayload(agent=name, payload=name, plaintext=plaintext)
            logger.info(f"  {name} agent decrypted {len(plaintext)} bytes")
            logger.info(f"  preview: {outcome.preview}...")
            return outcome

        if other is None:
            return

        @pipeline.step(
            f"deny:{name}->{other}",
            requires=["retrieve", f"session:{name}"],
            expect_error=Unauthorized,
            description=f"{name} agent attempts {other} data (must be denied)",
        )
        async def deny(results: Mapping) -> DecryptedPayload:
            auth = results[f"session:{name}"]
            plaintext = await self.gateway.decrypt(
                results["retrieve"][other], auth.credential, auth.policy_check_bytes
            )
            return DecryptedPayload(agent=name, payload=other, plaintext=plaintext)

    async def run(self) -> PipelineReport:
        logger.info(
            f"Access-control demo on {self.config.network.name}: "
            f"{len(self.config.agents)} agents, threshold {self.config.threshold}"
        )
        return await self.build_pipeline().run()
