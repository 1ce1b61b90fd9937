"""
Test Encryption Gateway

Encrypt under a whitelist, decrypt only with a matching, authorized and
unexpired session.
"""

import logging
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest
from nacl.signing import SigningKey

from data_wallet.core.encryption import EncryptedObject, EncryptionGateway
from data_wallet.core.errors import Expired, Unauthorized
from data_wallet.core.session import SessionCredential

PAYLOAD = b'{"messages":[{"id":"msg-001","subject":"hello"}]}'

ROUND_TRIP_PAYLOADS = [
    b"\x00",
    b"\xff\xfe\x80\x00 not utf-8 \xc3\x28",
    bytes(range(256)) * 32,
]


@pytest.fixture
def gateway(network):
    return EncryptionGateway(network.key_servers)


class TestEncrypt:
    """Tests for encryption"""

    @pytest.mark.asyncio
    async def test_header_names_policy(self, gateway, provision, registry):
        whitelist = await provision()
        policy = registry.policy_tuple(whitelist.whitelist_id)

        result = await gateway.encrypt(PAYLOAD, policy, threshold=2)
        header = EncryptedObject.from_bytes(result.encrypted_object)

        assert header.policy_tuple == policy
        assert header.threshold == 2
        assert len(header.services) == 2
        assert PAYLOAD not in result.encrypted_object

    @pytest.mark.asyncio
    async def test_empty_payload_rejected(self, gateway, provision, registry):
        whitelist = await provision()
        with pytest.raises(ValueError):
            await gateway.encrypt(b"", registry.policy_tuple(whitelist.whitelist_id))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold", [0, 3])
    async def test_threshold_bounds(self, gateway, provision, registry, threshold):
        whitelist = await provision()
        with pytest.raises(ValueError):
            await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id), threshold=threshold)

    @pytest.mark.asyncio
    async def test_key_servers_verify(self, gateway, network):
        assert await gateway.verify_key_servers() == await network.key_servers.key_servers()


class TestDecrypt:
    """Tests for policy-gated decryption"""

    @pytest.mark.asyncio
    async def test_member_decrypts(self, gateway, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(alice, whitelist.whitelist_id)

        plaintext = await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes)
        assert plaintext == PAYLOAD

    @pytest.mark.asyncio
    async def test_full_threshold_decrypts(self, gateway, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id), threshold=2)
        auth = await authorize(alice, whitelist.whitelist_id)

        assert await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes) == PAYLOAD

    @pytest.mark.asyncio
    async def test_non_member_denied(self, gateway, provision, authorize, registry, alice, bob):
        whitelist = await provision(alice)
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(bob, whitelist.whitelist_id)

        with pytest.raises(Unauthorized):
            await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes)

    @pytest.mark.asyncio
    async def test_session_for_one_whitelist_cannot_open_another(
        self, gateway, provision, authorize, registry, alice, bob
    ):
        alice_list = await provision(alice)
        bob_list = await provision(bob)
        bob_data = await gateway.encrypt(PAYLOAD, registry.policy_tuple(bob_list.whitelist_id))
        auth = await authorize(alice, alice_list.whitelist_id)

        with pytest.raises(Unauthorized):
            await gateway.decrypt(bob_data.encrypted_object, auth.credential, auth.policy_check_bytes)

    @pytest.mark.asyncio
    async def test_policy_check_for_foreign_whitelist_denied(
        self, gateway, provision, authorize, registry, alice, bob
    ):
        await provision(alice)
        bob_list = await provision(bob)
        bob_data = await gateway.encrypt(PAYLOAD, registry.policy_tuple(bob_list.whitelist_id))
        auth = await authorize(alice, bob_list.whitelist_id)

        with pytest.raises(Unauthorized):
            await gateway.decrypt(bob_data.encrypted_object, auth.credential, auth.policy_check_bytes)

    @pytest.mark.asyncio
    async def test_expired_session(self, gateway, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(alice, whitelist.whitelist_id)
        auth.credential.created_at_ms -= 11 * 60_000

        with pytest.raises(Expired):
            await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes)

    @pytest.mark.asyncio
    async def test_expired_session_rejected_by_key_servers(self, network, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        encrypted, _ = await network.key_servers.encrypt(
            PAYLOAD, registry.package_id, registry.policy_tuple(whitelist.whitelist_id).data_id, 1
        )
        auth = await authorize(alice, whitelist.whitelist_id)
        auth.credential.created_at_ms -= 11 * 60_000

        with pytest.raises(Expired):
            await network.key_servers.decrypt(encrypted, auth.credential, auth.policy_check_bytes)

    @pytest.mark.asyncio
    async def test_unsigned_session(self, gateway, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(alice, whitelist.whitelist_id)
        auth.credential.personal_message_signature = None

        with pytest.raises(Unauthorized):
            await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes)

    @pytest.mark.asyncio
    async def test_session_signed_by_another_identity(self, gateway, provision, authorize, registry, alice, bob):
        whitelist = await provision(alice)
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(alice, whitelist.whitelist_id)

        forged = SessionCredential.create(alice.address, registry.package_id)
        forged.personal_message_signature = bob.sign_personal_message(forged.personal_message())

        with pytest.raises(Unauthorized):
            await gateway.decrypt(result.encrypted_object, forged, auth.policy_check_bytes)

    @pytest.mark.asyncio
    async def test_membership_checked_at_decrypt_time(self, gateway, provision, authorize, registry, owner, alice):
        """Adding a member later grants access to data encrypted earlier"""
        whitelist = await provision()
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(alice, whitelist.whitelist_id)

        with pytest.raises(Unauthorized):
            await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes)

        await registry.add_address(owner, whitelist.whitelist_id, whitelist.cap_id, alice.address)
        assert await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes) == PAYLOAD

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", ROUND_TRIP_PAYLOADS, ids=["one-byte", "binary", "8KiB"])
    async def test_round_trip(self, gateway, provision, authorize, registry, alice, payload):
        whitelist = await provision(alice)
        result = await gateway.encrypt(payload, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(alice, whitelist.whitelist_id)

        assert await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes) == payload

    @pytest.mark.asyncio
    async def test_short_data_id_is_passed_through(self, registry, alice, caplog):
        caplog.set_level(logging.DEBUG, logger="data_wallet.core.encryption")
        service = AsyncMock()
        service.decrypt.return_value = b"plaintext"
        gateway = EncryptionGateway(service)

        obj = EncryptedObject(package_id=registry.package_id, id=b"\x01\x02", threshold=1, body=b"ct")
        credential = SessionCredential.create(alice.address, registry.package_id)
        credential.set_personal_message_signature(alice.sign_personal_message(credential.personal_message()))

        assert await gateway.decrypt(obj.to_bytes(), credential, b"check") == b"plaintext"
        service.decrypt.assert_awaited_once()
        assert "0102" in caplog.text


class TestKeyServerRequests:
    """Tests for the signed requests key servers receive"""

    @pytest.mark.asyncio
    async def test_certified_request_is_served(self, network, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        encrypted, _ = await network.key_servers.encrypt(
            PAYLOAD, registry.package_id, registry.policy_tuple(whitelist.whitelist_id).data_id, 2
        )
        auth = await authorize(alice, whitelist.whitelist_id)
        request = auth.credential.key_request(auth.policy_check_bytes)

        obj = EncryptedObject.from_bytes(encrypted)
        assert await network.key_servers.fetch_and_decrypt(obj, request) == PAYLOAD

    @pytest.mark.asyncio
    async def test_request_not_signed_by_session_key_refused(self, network, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        encrypted, _ = await network.key_servers.encrypt(
            PAYLOAD, registry.package_id, registry.policy_tuple(whitelist.whitelist_id).data_id, 1
        )
        auth = await authorize(alice, whitelist.whitelist_id)
        request = replace(
            auth.credential.key_request(auth.policy_check_bytes),
            request_signature=bytes(64),
        )

        with pytest.raises(Unauthorized):
            await network.key_servers.fetch_and_decrypt(EncryptedObject.from_bytes(encrypted), request)

    @pytest.mark.asyncio
    async def test_swapped_session_key_refused(self, gateway, provision, authorize, registry, alice):
        whitelist = await provision(alice)
        result = await gateway.encrypt(PAYLOAD, registry.policy_tuple(whitelist.whitelist_id))
        auth = await authorize(alice, whitelist.whitelist_id)
        auth.credential.session_key = SigningKey.generate()

        with pytest.raises(Unauthorized):
            await gateway.decrypt(result.encrypted_object, auth.credential, auth.policy_check_bytes)
