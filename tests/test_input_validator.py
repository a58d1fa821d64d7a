"""
Unit tests for input validation.

Tests cover:
- Version format rules
- Numeric ordering of version pairs
- Directory, hostname and credential checks
- The reachability probe
"""

import subprocess
from unittest.mock import patch

import pytest

from input_validator import (
    PairOrder,
    validate_credentials,
    validate_directory,
    validate_hostname,
    validate_hostname_reachable,
    validate_upgrade_pair,
    validate_version,
)
from mirror_errors import (
    InputError,
    InvalidVersionFormat,
    InvertedOrder,
    MissingPathError,
    MissingToolError,
    UnreachableHost,
)
from mirror_session import Version


class TestValidateVersion:
    @pytest.mark.parametrize("text,expected", [
        ("4.19.5", Version(4, 19, 5)),
        ("4.0.0", Version(4, 0, 0)),
        ("4.99.99", Version(4, 99, 99)),
        ("  4.20.1 ", Version(4, 20, 1)),
    ])
    def test_accepts_well_formed_versions(self, text, expected):
        assert validate_version(text) == expected

    @pytest.mark.parametrize("text", [
        "", "4.19", "4.19.5.1", "5.19.5", "v4.19.5", "4.100.1", "4.19.100",
        "4.19.x", "4..5", "4.19.5-rc.1", "04.19.5", "4.1a.2",
    ])
    def test_rejects_malformed_versions(self, text):
        with pytest.raises(InvalidVersionFormat) as exc:
            validate_version(text)
        assert exc.value.exit_code == 1

    def test_rejection_is_deterministic(self):
        messages = set()
        for _ in range(3):
            with pytest.raises(InvalidVersionFormat) as exc:
                validate_version("4.19")
            messages.add(exc.value.message)
        assert len(messages) == 1


class TestValidateUpgradePair:
    @pytest.mark.parametrize("base,upgrade", [
        ("4.19.5", "4.19.7"),
        ("4.9.10", "4.10.1"),
        ("4.19.9", "4.20.0"),
        ("4.19.2", "4.19.10"),
    ])
    def test_ordered_pairs_accepted(self, base, upgrade):
        assert validate_upgrade_pair(validate_version(base), validate_version(upgrade)) == PairOrder.ORDERED

    def test_equal_versions_mean_no_upgrade(self):
        v = validate_version("4.19.5")
        assert validate_upgrade_pair(v, validate_version("4.19.5")) == PairOrder.SAME

    @pytest.mark.parametrize("base,upgrade", [
        ("4.20.1", "4.19.9"),
        ("4.10.0", "4.9.0"),
        ("4.19.10", "4.19.9"),
    ])
    def test_inverted_pairs_rejected(self, base, upgrade):
        with pytest.raises(InvertedOrder) as exc:
            validate_upgrade_pair(validate_version(base), validate_version(upgrade))
        assert exc.value.exit_code == 1
        assert "is greater than" in exc.value.message


class TestValidateDirectory:
    def test_existing_directory(self, tmp_path):
        assert validate_directory(str(tmp_path)) == tmp_path

    def test_missing_directory(self, tmp_path):
        with pytest.raises(MissingPathError) as exc:
            validate_directory(str(tmp_path / "nope"))
        assert exc.value.exit_code == 2

    def test_file_is_not_a_directory(self, tmp_path):
        path = tmp_path / "file.txt"
        path.write_text("x")
        with pytest.raises(MissingPathError):
            validate_directory(path)

    def test_empty_answer(self):
        with pytest.raises(MissingPathError):
            validate_directory("  ")


class TestValidateHostname:
    @pytest.mark.parametrize("host", ["bastion.example.com", "bastion", "reg-01.lab.local."])
    def test_valid_hostnames(self, host):
        assert validate_hostname(host) == host.rstrip(".")

    @pytest.mark.parametrize("host", ["", "-bad.example.com", "bad_host.example.com", "a..b", "x" * 64])
    def test_invalid_hostnames(self, host):
        with pytest.raises(InputError):
            validate_hostname(host)


class TestReachability:
    def test_reachable_host(self):
        with patch("input_validator.subprocess.run") as run:
            run.return_value = subprocess.CompletedProcess([], 0)
            assert validate_hostname_reachable("bastion.example.com", 2) == "bastion.example.com"
        command = run.call_args[0][0]
        assert command == ["ping", "-c", "1", "-W", "2", "bastion.example.com"]

    def test_unreachable_host(self):
        with patch("input_validator.subprocess.run") as run:
            run.return_value = subprocess.CompletedProcess([], 1)
            with pytest.raises(UnreachableHost) as exc:
                validate_hostname_reachable("bastion.example.com")
        assert exc.value.exit_code == 1

    def test_probe_timeout(self):
        with patch("input_validator.subprocess.run", side_effect=subprocess.TimeoutExpired("ping", 7)):
            with pytest.raises(UnreachableHost):
                validate_hostname_reachable("bastion.example.com")

    def test_missing_ping(self):
        with patch("input_validator.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(MissingToolError) as exc:
                validate_hostname_reachable("bastion.example.com")
        assert exc.value.exit_code == 4


class TestCredentials:
    def test_valid(self):
        validate_credentials("admin", "pw")

    @pytest.mark.parametrize("username,password", [("", "pw"), ("  ", "pw"), ("admin", "")])
    def test_empty_values_rejected(self, username, password):
        with pytest.raises(InputError):
            validate_credentials(username, password)
