"""
Pytest configuration and shared fixtures for the mirror planner tests.
"""

import subprocess
from pathlib import Path

import pytest

from mirror_errors import CommandError
from mirror_session import PHASE_DOWNLOAD, PHASE_UPLOAD, MirrorSession, MirrorSettings, Version

TIB_KB = 1024 * 1024 * 1024
GB_KB = 1024 * 1024


class RecordingRunner:
    """Stands in for CommandRunner and records every command"""

    def __init__(self, fail_on=None):
        self.commands = []
        self.inputs = []
        self.secrets = []
        self.fail_on = dict(fail_on or {})

    def run(self, command, sudo=False, input_text=None, secrets=(), check=True):
        cmd = list(command)
        self.commands.append(cmd)
        self.inputs.append(input_text)
        self.secrets.append(list(secrets))
        joined = " ".join(cmd)
        for needle, code in self.fail_on.items():
            if needle in joined:
                raise CommandError(cmd, code)
        return subprocess.CompletedProcess(cmd, 0, "", None)

    def joined(self):
        return [" ".join(c) for c in self.commands]


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def settings(tmp_path: Path) -> MirrorSettings:
    """Settings pointing every host path into a temporary directory."""
    return MirrorSettings(
        download_retry_delay=0,
        log_dir=str(tmp_path / "log"),
        runtime_dir=str(tmp_path / "run"),
        install_dir=str(tmp_path / "bin"),
        repo_file=str(tmp_path / "local-mirror.repo"),
        ca_anchor_dir=str(tmp_path / "anchors"),
        cache_dir=str(tmp_path / "cache"),
    )


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def make_session(workdir: Path):
    """Factory for sessions with sensible defaults."""

    def _make(version="4.19.5", upgrade=None, phase=PHASE_DOWNLOAD):
        base = None
        target = None
        if phase == PHASE_DOWNLOAD:
            base = Version(*[int(p) for p in version.split(".")])
            target = Version(*[int(p) for p in (upgrade or version).split(".")])
        return MirrorSession(
            phase=phase,
            workdir=workdir,
            bastion_host="bastion.example.com",
            username="admin",
            password="s3cret-pass",
            version=base,
            upgrade_version=target,
        )

    return _make


@pytest.fixture
def upload_session(make_session) -> MirrorSession:
    return make_session(phase=PHASE_UPLOAD)


@pytest.fixture
def pull_secret() -> str:
    return '{"auths": {"quay.io": {"auth": "dXNlcjpwYXNz", "email": "ops@example.com"}}}'


def populate_workdir(workdir: Path, omit=()):
    """Lay out a working directory as the download phase leaves it"""
    for name in ("tools", "rpms", "mirror"):
        (workdir / name).mkdir(exist_ok=True)
    files = ["tools/oc", "tools/kubectl", "tools/oc-mirror", "tools/mirror-registry-amd64.tar.gz",
             "mirror.ImageSetConfiguration.yaml"]
    for name in files:
        if name not in omit:
            (workdir / name).write_text("x")
    return workdir
