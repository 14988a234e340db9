"""
Integration tests for configuration validator CLI
"""

import json
import subprocess
import sys
from pathlib import Path

import pytest
import yaml

from conftest import make_config_dict

REPO_ROOT = Path(__file__).parent.parent.parent


@pytest.fixture
def valid_config():
    """Valid catalogue with both endpoints and a non-zero margin"""
    return make_config_dict()


@pytest.fixture
def invalid_config():
    """Catalogue with broken references"""
    config = make_config_dict(settlement_token="ETH")
    config["venues"][2].pop("quoter")  # V3 venue without a quoter
    return config


@pytest.fixture
def config_with_warnings():
    """Valid catalogue that should still trigger warnings"""
    return make_config_dict(
        scan={"safety_margin_rate": 0},
        connection={"http_url": "http://localhost:8545", "max_reconnect_attempts": 0},
    )


def write_config(directory, name, config):
    path = directory / name
    with open(path, "w") as f:
        yaml.safe_dump(config, f)
    return path


@pytest.mark.integration
class TestConfigValidatorCLI:
    """Test the configuration validator CLI tool"""

    def run_validator(self, *args):
        cmd = [sys.executable, str(REPO_ROOT / "tools" / "validate_config.py")] + [
            str(a) for a in args
        ]
        return subprocess.run(cmd, capture_output=True, text=True, cwd=REPO_ROOT)

    def test_validate_single_valid_config(self, tmp_path, valid_config):
        config_path = write_config(tmp_path, "valid.yaml", valid_config)

        result = self.run_validator(config_path)

        assert result.returncode == 0
        assert "✓ VALID" in result.stdout
        assert "Validation complete: 1/1" in result.stdout

    def test_validate_single_invalid_config(self, tmp_path, invalid_config):
        config_path = write_config(tmp_path, "invalid.yaml", invalid_config)

        result = self.run_validator(config_path)

        assert result.returncode == 0  # Default mode doesn't exit with error
        assert "✗ INVALID" in result.stdout
        assert "Validation error" in result.stdout

    def test_strict_mode_fails_on_invalid(self, tmp_path, invalid_config):
        config_path = write_config(tmp_path, "invalid.yaml", invalid_config)

        result = self.run_validator("--strict", config_path)

        assert result.returncode == 1
        assert "Validation failed: 1 invalid configuration(s) found" in result.stdout

    def test_warnings_reported(self, tmp_path, config_with_warnings):
        config_path = write_config(tmp_path, "warn.yaml", config_with_warnings)

        result = self.run_validator(config_path)

        assert result.returncode == 0
        assert "Warnings:" in result.stdout
        assert "safety_margin_rate is 0" in result.stdout
        assert "No streaming endpoint" in result.stdout
        assert "max_reconnect_attempts is 0" in result.stdout

    def test_json_output(self, tmp_path, valid_config, invalid_config):
        good = write_config(tmp_path, "good.yaml", valid_config)
        bad = write_config(tmp_path, "bad.yaml", invalid_config)

        result = self.run_validator("--json", good, bad)

        assert result.returncode == 0
        results = json.loads(result.stdout)
        assert [r["valid"] for r in results] == [True, False]
        assert results[1]["errors"]

    def test_directory_mode(self, tmp_path, valid_config):
        write_config(tmp_path, "a.yaml", valid_config)
        write_config(tmp_path, "b.yml", valid_config)

        result = self.run_validator("--directory", tmp_path)

        assert result.returncode == 0
        assert "Total files: 2" in result.stdout

    def test_empty_directory(self, tmp_path):
        result = self.run_validator("--directory", tmp_path)
        assert result.returncode == 1
        assert "No configuration files found" in result.stdout

    def test_verbose_summary(self, tmp_path, valid_config):
        config_path = write_config(tmp_path, "valid.yaml", valid_config)

        result = self.run_validator("--verbose", config_path)

        assert "Settlement token: WETH" in result.stdout
        assert "Venues: UniswapV2, Sushiswap, UniswapV3" in result.stdout
        assert "Pairs: 1, paths: 1" in result.stdout

    def test_shipped_config_is_valid(self):
        result = self.run_validator("--strict", REPO_ROOT / "configs" / "mainnet.yaml")
        assert result.returncode == 0, result.stdout

    def test_requires_an_argument(self):
        result = self.run_validator()
        assert result.returncode == 1
        assert "Must specify either config files or directory" in result.stdout
