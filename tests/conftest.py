"""Shared fixtures: an in-process network and a few identities"""

import pytest

from data_wallet.config.schema import DEFAULT_PACKAGE_ID, ConfirmationConfig
from data_wallet.core.identity import Identity
from data_wallet.core.policy import PolicyRegistry
from data_wallet.core.session import SessionAuthorizationBuilder
from data_wallet.services.local import LocalNetwork

PACKAGE_ID = DEFAULT_PACKAGE_ID
MODULE = "access_policy"


@pytest.fixture
def fast_confirmation():
    return ConfirmationConfig(timeout=0.5, initial_interval=0.01, backoff=2.0, max_interval=0.05)


@pytest.fixture
def network(fast_confirmation):
    return LocalNetwork(PACKAGE_ID, MODULE, key_servers=2, confirmation=fast_confirmation)


@pytest.fixture
def owner():
    return Identity.generate(name="owner")


@pytest.fixture
def alice():
    return Identity.generate(name="alice")


@pytest.fixture
def bob():
    return Identity.generate(name="bob")


@pytest.fixture
def registry(network):
    return PolicyRegistry(network.ledger, PACKAGE_ID, MODULE)


@pytest.fixture
def provision(registry, owner):
    """Create a whitelist owned by `owner` holding the given identities"""
    async def _provision(*members):
        whitelist = await registry.create_whitelist(owner)
        for member in members:
            await registry.add_address(owner, whitelist.whitelist_id, whitelist.cap_id, member.address)
        return whitelist
    return _provision


@pytest.fixture
def authorize(network, registry):
    """Build a session authorization for an identity against a whitelist"""
    async def _authorize(identity, whitelist_id, ttl_minutes=10):
        policy = registry.policy_tuple(whitelist_id)
        builder = SessionAuthorizationBuilder(network.ledger, ttl_minutes=ttl_minutes)
        return await builder.build(
            identity, policy.package_id, MODULE, policy.data_id, policy.whitelist_id
        )
    return _authorize
