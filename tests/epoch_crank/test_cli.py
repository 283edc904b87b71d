"""
Tests for configuration and the command-line entry point.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from epoch_crank import (
    CloseRetriesExhaustedError,
    ConfigurationError,
    CrankConfig,
    get_config,
    set_config,
)
from epoch_crank.cli import async_main, build_config, create_parser, main, validate_args
from epoch_crank.config import DEFAULT_RPC_URL, DEFAULT_VAULT_PROGRAM_ID


REQUIRED_ARGS = [
    "--ncn", "Ncn",
    "--config-address", "Cfg",
    "--payer", "Payer",
    "--signer-url", "http://signer",
    "--entity-marker-offset", "8",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "RPC_URL", "SIGNER_URL", "SIGNER_TOKEN", "PAYER", "VAULT_PROGRAM_ID",
        "RESTAKING_PROGRAM_ID", "NCN", "CONFIG_ADDRESS", "ENTITY_MARKER_OFFSET",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("epoch_crank.config.load_dotenv", lambda: None)


# ============================================================
# CONFIG TESTS
# ============================================================

class TestCrankConfig:
    """Tests for CrankConfig."""

    def test_defaults(self):
        config = CrankConfig()

        assert config.rpc_url == DEFAULT_RPC_URL
        assert config.tick_interval_seconds == 3600
        assert config.max_close_attempts == 9
        assert config.rpc_timeout_seconds == 60.0
        assert config.log_file == "app.log"

    def test_validate_reports_missing_fields(self):
        errors = CrankConfig().validate()

        assert "signer_url is required" in errors
        assert "group_id (NCN) is required" in errors
        assert "config_address is required" in errors
        assert "entity_marker_offset is required" in errors

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("NCN", "NcnEnv")
        monkeypatch.setenv("SIGNER_TOKEN", "secret")
        monkeypatch.setenv("ENTITY_MARKER_OFFSET", "16")

        config = CrankConfig.from_env(config_address="CfgArg", group_id=None)

        assert config.group_id == "NcnEnv"
        assert config.signer_token == "secret"
        assert config.config_address == "CfgArg"
        assert config.layout.entity_marker_offset == 16
        assert config.vault_program_id == DEFAULT_VAULT_PROGRAM_ID

    def test_non_numeric_marker_offset(self, monkeypatch):
        monkeypatch.setenv("ENTITY_MARKER_OFFSET", "abc")

        with pytest.raises(ConfigurationError, match="ENTITY_MARKER_OFFSET") as exc_info:
            CrankConfig.from_env()

        assert not exc_info.value.recoverable

    def test_zero_marker_offset_is_kept(self, monkeypatch):
        monkeypatch.setenv("ENTITY_MARKER_OFFSET", "0")

        assert CrankConfig.from_env().layout.entity_marker_offset == 0

    def test_to_dict_omits_token(self):
        config = CrankConfig(signer_token="secret")

        assert "secret" not in str(config.to_dict())

    def test_default_instance(self):
        custom = CrankConfig(group_id="X")
        set_config(custom)

        assert get_config() is custom


# ============================================================
# CLI TESTS
# ============================================================

class TestCli:
    """Tests for the CLI."""

    def test_build_config_from_args(self):
        args = create_parser().parse_args(REQUIRED_ARGS + ["--tick-interval", "60", "--log-file", "-"])

        config = build_config(args)

        assert config.group_id == "Ncn"
        assert config.layout.entity_marker_offset == 8
        assert config.tick_interval_seconds == 60
        assert config.log_file is None
        assert config.validate() == []

    def test_invalid_max_ticks(self):
        args = create_parser().parse_args(REQUIRED_ARGS + ["--max-ticks", "0"])

        assert validate_args(args) == ["--max-ticks must be at least 1"]

    def test_missing_required_returns_1(self, capsys):
        assert main([]) == 1
        assert "signer_url is required" in capsys.readouterr().err

    def test_malformed_env_returns_1(self, monkeypatch, capsys):
        monkeypatch.setenv("ENTITY_MARKER_OFFSET", "abc")

        assert main(REQUIRED_ARGS[:-2]) == 1
        assert "Error: ENTITY_MARKER_OFFSET must be an integer" in capsys.readouterr().err

    def test_runs_async_main(self):
        with patch("epoch_crank.cli.setup_logging") as setup, \
                patch("epoch_crank.cli.async_main", new=AsyncMock(return_value=0)) as run:
            assert main(REQUIRED_ARGS + ["--max-ticks", "2"]) == 0

        setup.assert_called_once()
        assert run.await_args.kwargs == {"max_ticks": 2}

    @pytest.mark.asyncio
    async def test_fatal_error_exit_code(self):
        crank = MagicMock()
        crank.run_forever = AsyncMock(side_effect=CloseRetriesExhaustedError(1, 9))
        crank.close = AsyncMock()
        crank.get_stats.return_value = {}

        with patch("epoch_crank.cli.create_crank", new=AsyncMock(return_value=crank)):
            assert await async_main(CrankConfig()) == 1

        crank.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_bounded_run_exit_code(self):
        crank = MagicMock()
        crank.run_forever = AsyncMock()
        crank.close = AsyncMock()
        crank.get_stats.return_value = {}

        with patch("epoch_crank.cli.create_crank", new=AsyncMock(return_value=crank)):
            assert await async_main(CrankConfig(), max_ticks=1) == 0

        crank.run_forever.assert_awaited_once_with(max_ticks=1)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_logged_critical(self, caplog):
        crank = MagicMock()
        crank.run_forever = AsyncMock(side_effect=TypeError("bad payload"))
        crank.close = AsyncMock()
        crank.get_stats.return_value = {}

        with patch("epoch_crank.cli.create_crank", new=AsyncMock(return_value=crank)):
            assert await async_main(CrankConfig()) == 1

        assert any(
            record.levelname == "CRITICAL" and "bad payload" in record.getMessage()
            for record in caplog.records
        )
        crank.close.assert_awaited_once()
