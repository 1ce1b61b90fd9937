"""
Test Access-Control Scenario

End-to-end demo runs on the in-process network.
"""

import json

import pytest
from nacl.signing import SigningKey

from data_wallet.config.schema import AgentConfig, ConfirmationConfig, WalletConfig
from data_wallet.core.errors import Unauthorized
from data_wallet.core.identity import Identity
from data_wallet.core.pipeline import StepStatus
from data_wallet.core.storage import split
from data_wallet.network import build_services
from data_wallet.scenario import AccessControlScenario, canonical_json

EMAIL = {"source": "email", "messages": [{"id": "msg-001", "subject": "Dinner on Friday?"}]}
DISCORD = {"source": "discord", "servers": [{"name": "Move Builders", "channels": []}]}


@pytest.fixture
def inputs(tmp_path):
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "email_1.json").write_text(json.dumps(EMAIL, indent=2))
    (tmp_path / "data" / "discord.json").write_text(json.dumps(DISCORD, indent=2))
    return tmp_path


def make_config(working_dir, **kwargs):
    return WalletConfig(
        working_dir=working_dir,
        confirmation=ConfirmationConfig(timeout=0.5, initial_interval=0.01),
        **kwargs,
    )


class TestCanonicalJson:
    """Tests for payload loading"""

    def test_compact_and_stable(self, tmp_path):
        path = tmp_path / "payload.json"
        path.write_text('{\n  "b": [1, 2],\n  "a": "é"\n}', encoding="utf-8")
        assert canonical_json(path) == '{"b":[1,2],"a":"é"}'.encode("utf-8")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "payload.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            canonical_json(path)


class TestAccessControlScenario:
    """Tests for the end-to-end demo"""

    @pytest.mark.asyncio
    async def test_full_run(self, inputs):
        config = make_config(inputs)

        async with await build_services(config) as services:
            scenario = AccessControlScenario(config, services)
            report = await scenario.run()
            principals = scenario.load_principals()
            ledger = services.local.ledger
            blob_store = services.local.blob_store

            assert report.ok, report.counts()

            for name in ("email", "discord"):
                whitelist = report.get(f"whitelist:{name}").value
                assert ledger.whitelist_members(whitelist.whitelist_id) == [principals.agents[name].address]

            stored = report.get("upload").value
            assert blob_store.owners[stored.blob_id] == principals.owner.address
            assert set(split(blob_store.blobs[stored.blob_id])) == {"email", "discord"}

        email = report.get("decrypt:email").value
        assert email.plaintext == json.dumps(EMAIL, separators=(",", ":")).encode("utf-8")
        assert email.preview.startswith('{"source":"email"')

        denied = report.get("deny:email->discord")
        assert denied.status == StepStatus.DENIED_AS_EXPECTED
        assert isinstance(denied.error, Unauthorized)
        assert report.get("deny:discord->email").status == StepStatus.DENIED_AS_EXPECTED
        assert report.get("decrypt:discord").status == StepStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_step_order(self, inputs):
        config = make_config(inputs)

        async with await build_services(config) as services:
            names = [s.name for s in AccessControlScenario(config, services).build_pipeline().steps]

        assert names.index("authorize:email") < names.index("encrypt:email") < names.index("upload")
        assert names.index("upload") < names.index("retrieve") < names.index("decrypt:email")
        assert names.index("decrypt:email") < names.index("deny:email->discord") < names.index("decrypt:discord")

    @pytest.mark.asyncio
    async def test_missing_input_skips_only_dependent_steps(self, inputs):
        (inputs / "data" / "discord.json").unlink()
        config = make_config(inputs)

        async with await build_services(config) as services:
            report = await AccessControlScenario(config, services).run()

        assert not report.ok
        assert report.get("load:discord").status == StepStatus.FAILED
        assert isinstance(report.get("load:discord").error, FileNotFoundError)
        for name in ("encrypt:discord", "upload", "retrieve", "decrypt:email", "deny:email->discord"):
            assert report.get(name).status == StepStatus.SKIPPED
        for name in ("whitelist:discord", "authorize:discord", "encrypt:email", "session:email"):
            assert report.get(name).status == StepStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_single_agent_has_no_denial_step(self, inputs):
        config = make_config(inputs, agents=[AgentConfig(name="email", input_path="data/email_1.json")])

        async with await build_services(config) as services:
            report = await AccessControlScenario(config, services).run()

        assert report.ok
        assert not any(r.name.startswith("deny:") for r in report.results)

    @pytest.mark.asyncio
    async def test_configured_keys_are_used(self, inputs):
        owner_seed = "0x" + bytes(SigningKey.generate()).hex()
        config = make_config(inputs, owner_key=owner_seed)

        async with await build_services(config) as services:
            principals = AccessControlScenario(config, services).load_principals()

        assert principals.owner.address == Identity.from_secret_key(owner_seed).address
        assert set(principals.agents) == {"email", "discord"}

    @pytest.mark.asyncio
    async def test_threshold_above_key_servers_fails_encryption(self, inputs):
        config = make_config(inputs, threshold=3)

        async with await build_services(config) as services:
            report = await AccessControlScenario(config, services).run()

        assert report.get("encrypt:email").status == StepStatus.FAILED
        assert isinstance(report.get("encrypt:email").error, ValueError)
        assert report.get("upload").status == StepStatus.SKIPPED


class TestEntryPoint:
    """Tests for python -m data_wallet"""

    @pytest.mark.asyncio
    async def test_local_run_exits_zero(self, inputs, monkeypatch, capsys):
        from data_wallet.__main__ import main

        monkeypatch.chdir(inputs)
        monkeypatch.setattr("sys.argv", ["data_wallet", "--network", "local"])

        assert await main() == 0
        output = capsys.readouterr().out
        assert "PASSED" in output
        assert "denied_as_expected" in output

    @pytest.mark.asyncio
    async def test_bad_config_exits_one(self, tmp_path, monkeypatch):
        from data_wallet.__main__ import main

        config_file = tmp_path / "wallet.yaml"
        config_file.write_text("network: devnet-9\n")
        monkeypatch.setattr("sys.argv", ["data_wallet", "--config", str(config_file)])

        assert await main() == 1
