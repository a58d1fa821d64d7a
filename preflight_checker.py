"""
Environment preconditions checked before any mutating step runs.

Independent checks all run so the operator sees every problem at once;
a check that depends on an earlier failed one is recorded as skipped.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from mirror_errors import (
    EXIT_DISK_SPACE,
    EXIT_MISSING_PATH,
    EXIT_MISSING_TOOL,
    EXIT_SUBSCRIPTION,
    PreconditionError,
)
from mirror_session import (
    INSTALLED_BINARIES,
    PHASE_DOWNLOAD,
    PHASE_UPLOAD,
    WORKDIR_LAYOUT,
    MirrorSession,
    MirrorSettings,
)

logger = logging.getLogger(__name__)

KB_PER_GB = 1024 * 1024

DOWNLOAD_TOOLS = ("dnf", "tar")
UPLOAD_TOOLS = ("dnf", "tar")


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str
    fatal: bool = True
    exit_code: int = 0
    skipped: bool = False

    def __str__(self) -> str:
        status = "SKIP" if self.skipped else ("PASS" if self.passed else "FAIL")
        return f"[{status}] {self.name}: {self.detail}"


@dataclass
class PreflightResult:
    checks: List[CheckResult] = field(default_factory=list)

    def add(self, check: CheckResult) -> CheckResult:
        self.checks.append(check)
        if check.skipped:
            logger.info(f"- {check.name}: {check.detail}")
        elif check.passed:
            logger.info(f"✓ {check.name}: {check.detail}")
        elif check.fatal:
            logger.error(f"✗ {check.name}: {check.detail}")
        else:
            logger.warning(f"⚠ {check.name}: {check.detail}")
        return check

    def get(self, name: str) -> Optional[CheckResult]:
        for check in self.checks:
            if check.name == name:
                return check
        return None

    @property
    def failures(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed and not c.skipped]

    @property
    def fatal_failures(self) -> List[CheckResult]:
        return [c for c in self.failures if c.fatal]

    @property
    def ok(self) -> bool:
        return not self.fatal_failures

    def raise_for_failures(self):
        """Raise one PreconditionError carrying every fatal failure"""
        fatal = self.fatal_failures
        if not fatal:
            return
        first = fatal[0]
        details = [f"{c.name}: {c.detail}" for c in fatal]
        message = first.detail if len(fatal) == 1 else (
            f"{len(fatal)} preflight checks failed: " + "; ".join(details)
        )
        raise PreconditionError(message, exit_code=first.exit_code, failures=details)


def available_kb(path: str) -> int:
    """Free space available to unprivileged users at path, in KB"""
    stat = os.statvfs(path)
    return (stat.f_bavail * stat.f_frsize) // 1024


def _default_probe(command: Sequence[str]) -> int:
    return subprocess.run(
        list(command),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    ).returncode


class PreflightChecker:
    """Runs the preflight checks for a session's phase"""

    def __init__(
        self,
        settings: MirrorSettings,
        which: Callable[[str], Optional[str]] = shutil.which,
        probe: Callable[[Sequence[str]], int] = _default_probe,
        free_kb: Callable[[str], int] = available_kb,
        release_client=None,
    ):
        self.settings = settings
        self.which = which
        self.probe = probe
        self.free_kb = free_kb
        self.release_client = release_client

    def run_checks(self, session: MirrorSession) -> PreflightResult:
        """Run every check for the session's phase and return the collected results"""
        logger.info("Running preflight checks...")
        result = PreflightResult()

        if session.phase == PHASE_DOWNLOAD:
            self._check_subscription(result)
            self._check_disk_space(result, session)
            self._check_tools(result, DOWNLOAD_TOOLS)
            if self.settings.verify_release and self.release_client is not None:
                self._check_release_published(result, session)
        elif session.phase == PHASE_UPLOAD:
            self._check_layout(result, session)
            self._check_tools(result, UPLOAD_TOOLS)
        else:
            raise ValueError(f"Unknown phase: {session.phase}")

        if result.ok:
            logger.info("✓ All preflight checks passed")
        return result

    def _check_subscription(self, result: PreflightResult):
        if not self.which("subscription-manager"):
            result.add(CheckResult(
                "subscription-tool", False,
                "subscription-manager not found. Please install it first.",
                exit_code=EXIT_MISSING_TOOL,
            ))
            result.add(CheckResult(
                "subscription-active", False,
                "skipped: subscription-manager is not available",
                skipped=True,
            ))
            return

        result.add(CheckResult("subscription-tool", True, "subscription-manager found"))
        if self.probe(["subscription-manager", "status"]) == 0:
            result.add(CheckResult("subscription-active", True, "System registered with valid subscription."))
        else:
            result.add(CheckResult(
                "subscription-active", False,
                "System is not registered or subscription invalid.",
                exit_code=EXIT_SUBSCRIPTION,
            ))

    def _check_disk_space(self, result: PreflightResult, session: MirrorSession):
        required = self.settings.min_free_kb
        available = self.free_kb(str(session.workdir))
        available_gb = available // KB_PER_GB
        required_gb = required // KB_PER_GB

        if available >= required:
            result.add(CheckResult(
                "disk-space", True,
                f"{session.workdir} has enough free space ({available_gb} GB available)",
            ))
            return

        shortfall_gb = -(-(required - available) // KB_PER_GB)
        result.add(CheckResult(
            "disk-space", False,
            f"Not enough space in {session.workdir}. Required: {required_gb} GB, "
            f"Available: {available_gb} GB, Short by: {shortfall_gb} GB",
            exit_code=EXIT_DISK_SPACE,
        ))

    def _check_layout(self, result: PreflightResult, session: MirrorSession):
        """Check the transferred working directory before the bastion is touched"""
        missing = [name for name in WORKDIR_LAYOUT if not (session.workdir / name).is_dir()]
        if missing:
            result.add(CheckResult(
                "directory-layout", False,
                "Missing directories in {}: {}".format(session.workdir, ", ".join(missing)),
                exit_code=EXIT_MISSING_PATH,
            ))
            result.add(CheckResult(
                "required-files", False,
                "skipped: working directory layout is incomplete",
                skipped=True,
            ))
            return

        result.add(CheckResult(
            "directory-layout", True,
            "{} contains {}".format(session.workdir, ", ".join(WORKDIR_LAYOUT)),
        ))

        required = [session.tools_dir / name for name in INSTALLED_BINARIES]
        required += [session.registry_archive, session.imageset_path]
        absent = [str(path.relative_to(session.workdir)) for path in required if not path.is_file()]
        if absent:
            result.add(CheckResult(
                "required-files", False,
                "Missing files in {}: {}. Please ensure the download phase completed "
                "and the working directory was copied in full.".format(session.workdir, ", ".join(absent)),
                exit_code=EXIT_MISSING_PATH,
            ))
        else:
            result.add(CheckResult("required-files", True, "Binaries, registry archive and ImageSetConfiguration found"))

    def _check_tools(self, result: PreflightResult, tools: Sequence[str]):
        missing = [tool for tool in tools if not self.which(tool)]
        if missing:
            result.add(CheckResult(
                "tool-present", False,
                f"Missing required commands: {', '.join(missing)}",
                exit_code=EXIT_MISSING_TOOL,
            ))
        else:
            result.add(CheckResult("tool-present", True, f"Found {', '.join(tools)}"))

    def _check_release_published(self, result: PreflightResult, session: MirrorSession):
        versions = [session.version]
        if session.upgrade_planned:
            versions.append(session.upgrade_version)

        unpublished = []
        for version in versions:
            published = self.release_client.is_published(version.channel, str(version))
            if published is None:
                result.add(CheckResult(
                    "release-published", True,
                    f"could not reach the update graph to verify {version}",
                    fatal=False, skipped=True,
                ))
                return
            if not published:
                unpublished.append(f"{version} ({version.channel})")

        if unpublished:
            result.add(CheckResult(
                "release-published", False,
                f"Not found in the update graph: {', '.join(unpublished)}",
                fatal=False,
            ))
        else:
            result.add(CheckResult(
                "release-published", True,
                f"{', '.join(str(v) for v in versions)} published",
            ))
