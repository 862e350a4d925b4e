"""Tests for the command line entry point."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

import bootstrap_token_manager.main as main_module
from bootstrap_token_manager import __version__
from bootstrap_token_manager.main import main, parse_args


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "cloud_provider:\n"
        "  provider: azure\n"
        "  azure:\n"
        "    vault_url: https://test.vault.azure.net\n"
        "logging:\n"
        f"  log_dir: {tmp_path / 'logs'}\n"
    )
    return path


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr(main_module, "load_dotenv", lambda: None)


class TestParseArgs:
    """Tests for argument parsing."""

    def test_defaults(self):
        """Continuous mode without overrides by default."""
        args = parse_args([])

        assert args.mode == "continuous"
        assert args.config is None
        assert not args.dry_run
        assert not args.full_sync
        assert not args.validate
        assert args.log_level is None

    def test_flags(self):
        """All flags are parsed."""
        args = parse_args(
            [
                "--mode",
                "once",
                "--config",
                "x.yaml",
                "--dry-run",
                "--full-sync",
                "--log-level",
                "DEBUG",
            ]
        )

        assert args.mode == "once"
        assert args.config == Path("x.yaml")
        assert args.dry_run
        assert args.full_sync
        assert args.log_level == "DEBUG"

    def test_version(self, capsys):
        """--version prints the package version."""
        with pytest.raises(SystemExit) as exc_info:
            parse_args(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out


class TestMain:
    """Tests for main()."""

    def test_validate_valid(self, config_file, capsys):
        """--validate exits 0 for a valid config."""
        assert main(["--config", str(config_file), "--validate"]) == 0
        assert "Configuration valid" in capsys.readouterr().out

    def test_validate_invalid(self, tmp_path, capsys):
        """--validate exits 1 when required settings are missing."""
        assert main(["--config", str(tmp_path / "missing.yaml"), "--validate"]) == 1
        assert "cloud_provider.provider is required" in capsys.readouterr().out

    def test_invalid_config_fails_fast(self, tmp_path, capsys):
        """An invalid config stops before touching the cluster."""
        assert main(["--config", str(tmp_path / "missing.yaml"), "--mode", "once"]) == 1
        assert "Configuration INVALID" in capsys.readouterr().err

    def test_bad_duration(self, tmp_path, monkeypatch):
        """Unparseable durations are configuration errors."""
        monkeypatch.setenv("SYNC_TIME", "soon")

        assert main(["--config", str(tmp_path / "missing.yaml"), "--validate"]) == 1

    def test_once_runs_single_cycle(self, config_file, monkeypatch):
        """Once mode wires the collaborators and returns the cycle result."""
        manager = MagicMock()
        manager.run_once.return_value = 0
        manager_cls = MagicMock(return_value=manager)
        provider = MagicMock()
        provider.__enter__.return_value = provider
        new_provider = MagicMock(return_value=provider)
        load_k8s = MagicMock()
        store_cls = MagicMock()
        monkeypatch.setattr(main_module, "setup_logging", MagicMock())
        monkeypatch.setattr(main_module, "load_kubernetes_config", load_k8s)
        monkeypatch.setattr(main_module, "KubernetesSecretStore", store_cls)
        monkeypatch.setattr(main_module, "new_cloud_provider", new_provider)
        monkeypatch.setattr(main_module, "BootstrapTokenManager", manager_cls)

        exit_code = main(["--config", str(config_file), "--mode", "once", "--dry-run"])

        assert exit_code == 0
        load_k8s.assert_called_once_with()
        store_cls.assert_called_once_with(namespace="kube-system")
        assert new_provider.call_args.args[0] == "azure"
        config = manager_cls.call_args.args[0]
        assert config.dry_run is True
        manager.run_once.assert_called_once_with()
        provider.__exit__.assert_called_once()

    def test_fatal_error_exit_code(self, config_file, monkeypatch):
        """Fatal startup errors return 1."""
        from core.errors import ConfigurationError

        monkeypatch.setattr(main_module, "setup_logging", MagicMock())
        monkeypatch.setattr(
            main_module,
            "load_kubernetes_config",
            MagicMock(side_effect=ConfigurationError("no kubeconfig")),
        )

        assert main(["--config", str(config_file), "--mode", "once"]) == 1
