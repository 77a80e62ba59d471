"""Unit tests for ContractTool (create_datadao.chain.contracts)."""

from __future__ import annotations

import pytest

from create_datadao.chain.contracts import ContractTool
from create_datadao.errors import ErrorKind, ExternalError, TerminalExternalError
from create_datadao.retry import BackoffPolicy, classify, retry, retry_on

TOKEN = "0x" + "cd" * 20
PROXY = "0x" + "ab" * 20
OWNER = "0x" + "12" * 20
TX_HASH = "0x" + "ef" * 32

DEPLOY_OUTPUT = f"""
Compiled 42 Solidity files successfully
DAT token deployed at {TOKEN}
DLP deployed to: {PROXY}
"""


class TestDeploy:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_extracts_addresses(self, config, runner):
        runner.on("npx", "hardhat", "deploy", stdout=DEPLOY_OUTPUT)
        result = await ContractTool(config, runner).deploy()

        assert result == {"tokenAddress": TOKEN, "contractAddress": PROXY}
        call = runner.calls[0]
        assert call["cwd"] == config.contracts_dir
        assert call["cmd"] == config.contracts.deploy_command
        assert call["timeout"] == config.contracts.timeout

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_addresses(self, config, runner):
        runner.on("npx", stdout="Nothing to compile")
        with pytest.raises(ExternalError, match="extract contract addresses"):
            await ContractTool(config, runner).deploy()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_classified_from_output(self, config, runner):
        runner.on("npx", returncode=1, stderr="ProviderError: insufficient funds for gas * price + value")
        with pytest.raises(TerminalExternalError) as exc_info:
            await ContractTool(config, runner).deploy()
        assert exc_info.value.kind is ErrorKind.INSUFFICIENT_FUNDS
        assert exc_info.value.code == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_npx_missing(self, config, runner):
        runner.on("npx", raises=FileNotFoundError("npx"))
        with pytest.raises(ExternalError) as exc_info:
            await ContractTool(config, runner).deploy()
        assert exc_info.value.kind is ErrorKind.TOOL_MISSING


class TestRegistration:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_register_dlp(self, config, runner):
        runner.on("npx", stdout=f"Submitted registerDlp\ntx: {TX_HASH}\n")
        tx = await ContractTool(config, runner).register_dlp(PROXY, OWNER, "WeatherDAO")

        assert tx == TX_HASH
        env = runner.calls[0]["env"]
        assert env["DLP_ADDRESS"] == PROXY
        assert env["OWNER_ADDRESS"] == OWNER
        assert env["TREASURY_ADDRESS"] == OWNER
        assert env["DLP_NAME"] == "WeatherDAO"
        assert env["DLP_REGISTRY_ADDRESS"] == config.network.registry_address

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_register_refiner(self, config, runner):
        runner.on("npx", stdout=f"addRefiner sent {TX_HASH}")
        tx = await ContractTool(config, runner).register_refiner(
            42, "WeatherDAO Refiner", "ipfs://schema", "https://github.com/o/r/releases/x.tar.gz", "0xkey"
        )

        assert tx == TX_HASH
        env = runner.calls[0]["env"]
        assert env["DLP_ID"] == "42"
        assert env["REFINER_PUBLIC_KEY"] == "0xkey"
        assert env["SCHEMA_DEFINITION_URL"] == "ipfs://schema"
        assert runner.calls[0]["cmd"] == config.contracts.refiner_register_command

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_hash_printed(self, config, runner):
        runner.on("npx", stdout="done")
        with pytest.raises(ExternalError, match="no transaction hash"):
            await ContractTool(config, runner).register_dlp(PROXY, OWNER, "WeatherDAO")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_revert(self, config, runner):
        runner.on("npx", returncode=1, stderr="Error: execution reverted: InvalidDlpStatus")
        with pytest.raises(ExternalError) as exc_info:
            await ContractTool(config, runner).register_dlp(PROXY, OWNER, "WeatherDAO")
        assert exc_info.value.kind is ErrorKind.CONTRACT_REVERTED

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unrecognised_failure_stays_unknown(self, config, runner, clock):
        runner.on("npx", returncode=1, stderr='Error HH700: Artifact for contract "DataRefinerRegistry" not found.')
        tool = ContractTool(config, runner)
        policy = BackoffPolicy(initial_delay_ms=100, is_retryable=retry_on(ErrorKind.NONCE_CONFLICT))

        with pytest.raises(ExternalError) as exc_info:
            await retry(
                lambda: tool.register_refiner(42, "WeatherDAO Refiner", "ipfs://schema", "https://x/r.tar.gz", "0xkey"),
                policy,
                sleep=clock.sleep,
            )

        assert "--network moksha" in str(exc_info.value)
        assert exc_info.value.kind is ErrorKind.UNKNOWN
        assert classify(exc_info.value).kind is ErrorKind.UNKNOWN
        assert exc_info.value.details["output"].startswith("Error HH700")
        assert len(runner.calls) == 1
        assert clock.sleeps == []
