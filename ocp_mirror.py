#!/usr/bin/env python3
"""
OpenShift Disconnected Mirror Planner
Validates input and the environment, plans the ImageSetConfiguration and
runs the provisioning steps for the download (connected host) and upload
(bastion host) phases.
"""

import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from config_emitter import MirrorPlan, emit_plan
from input_validator import (
    validate_credentials,
    validate_directory,
    validate_hostname,
    validate_hostname_reachable,
    validate_upgrade_pair,
    validate_version,
)
from mirror_errors import EXIT_INTERRUPTED, EXIT_OK, InputError, MirrorError, PreconditionError
from mirror_session import (
    DEFAULT_CONFIG_FILE,
    PHASE_DOWNLOAD,
    PHASE_UPLOAD,
    MirrorSession,
    MirrorSettings,
    create_sample_config,
)
from preflight_checker import PreflightChecker, PreflightResult
from prompts import ConsolePrompter
from provisioning import Provisioner
from release_graph import ReleaseGraphClient
from secret_handler import SecretHandler
from step_runner import CommandRunner, SessionResult, StepRunner

SCRIPT_VERSION = "1.0.0"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
logger = logging.getLogger("ocp_mirror")


class MirrorOrchestrator:
    """Runs one provisioning session from prompts to the final oc mirror"""

    def __init__(
        self,
        settings: MirrorSettings,
        prompter=None,
        answers: Optional[Dict[str, str]] = None,
        dry_run: bool = False,
        checker: Optional[PreflightChecker] = None,
        step_runner: Optional[StepRunner] = None,
        probe_host: Callable[[str, int], str] = validate_hostname_reachable,
        runner: Optional[CommandRunner] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self.settings = settings
        self.prompter = prompter or ConsolePrompter()
        self.answers = {k: v for k, v in (answers or {}).items() if v}
        self.dry_run = dry_run
        self.probe_host = probe_host
        self.environ = dict(os.environ if environ is None else environ)
        self.runner = runner
        self.step_runner = step_runner or StepRunner(dry_run=dry_run)

        if checker is None:
            release_client = None
            if settings.verify_release:
                release_client = ReleaseGraphClient(settings.release_graph_url, cache_dir=settings.cache_dir)
            checker = PreflightChecker(settings, release_client=release_client)
        self.checker = checker

    # ---- prompts ----

    def _ask(self, key: str, prompt: str, secret: bool = False) -> str:
        if key in self.answers:
            return self.answers[key]
        try:
            if secret:
                return self.prompter.ask_secret(prompt)
            return self.prompter.ask(prompt)
        except EOFError:
            raise InputError(f"No answer given for: {prompt.strip()}")

    def _collect_host_and_credentials(self):
        host = validate_hostname(self._ask("bastion", "Enter bastion FQDN: "))
        self.probe_host(host, self.settings.ping_timeout)

        endpoint = f"{host}:{self.settings.registry_port}"
        username = self._ask("username", f"Enter USERNAME for Quay {endpoint}: ")
        password = self._ask("password", f"Enter PASSWORD for Quay {endpoint}: ", secret=True)
        validate_credentials(username, password)
        return host, username.strip(), password

    def collect_download_session(self) -> MirrorSession:
        """Prompt for and validate everything the download phase needs"""
        version = validate_version(self._ask(
            "version", "Enter OpenShift version to mirror (format 4.X.Y, ie. 4.19.5): "))
        upgrade = validate_version(self._ask(
            "upgrade_version",
            "Enter OpenShift version (in case of upgrade planned) to mirror (format 4.X.Y, ie. 4.19.7). "
            "If upgrade isn't planned please enter the same version as above: "))
        validate_upgrade_pair(version, upgrade)

        workdir = validate_directory(self._ask("workdir", "Enter path to working directory: "))
        host, username, password = self._collect_host_and_credentials()

        return MirrorSession(
            phase=PHASE_DOWNLOAD,
            workdir=workdir,
            bastion_host=host,
            username=username,
            password=password,
            version=version,
            upgrade_version=upgrade,
            registry_port=self.settings.registry_port,
        )

    def collect_upload_session(self) -> MirrorSession:
        """Prompt for and validate everything the upload phase needs"""
        workdir = validate_directory(self._ask("workdir", "Enter path to working directory: "))
        host, username, password = self._collect_host_and_credentials()
        return MirrorSession(
            phase=PHASE_UPLOAD,
            workdir=workdir,
            bastion_host=host,
            username=username,
            password=password,
            registry_port=self.settings.registry_port,
        )

    # ---- stages ----

    def preflight(self, session: MirrorSession) -> PreflightResult:
        """Run the preflight checks, raising on any fatal failure"""
        result = self.checker.run_checks(session)
        result.raise_for_failures()
        return result

    def ingest_secret(self) -> Path:
        """Read the pull secret from a file or stdin and store it"""
        handler = SecretHandler(self.settings.resolve_runtime_dir(self.environ))
        if "pull_secret_file" in self.answers:
            path = self.answers["pull_secret_file"]
            try:
                with open(path, "r") as f:
                    raw = f.read()
            except OSError as e:
                raise PreconditionError(f"Cannot read pull-secret file {path}: {e}")
        else:
            raw = self.prompter.read_stream("Paste your OpenShift pull-secret JSON (end with CTRL+D):")

        if self.dry_run:
            handler.validate(raw)
            logger.info(f"[Dry Run] Pull-secret is valid; would store it in {handler.auth_file}")
            return handler.auth_file
        return handler.ingest_pull_secret(raw)

    def _command_runner(self, session: MirrorSession) -> CommandRunner:
        if self.runner is not None:
            return self.runner
        no_proxy = self.environ.get("NO_PROXY", "")
        env = {
            "NO_PROXY": f"{no_proxy},{session.bastion_host}" if no_proxy else session.bastion_host,
            "XDG_RUNTIME_DIR": str(self.settings.resolve_runtime_dir(self.environ)),
        }
        return CommandRunner(env=env)

    def provisioner(self, session: MirrorSession) -> Provisioner:
        return Provisioner(session, self.settings, self._command_runner(session))

    # ---- phases ----

    def download(self) -> SessionResult:
        """Run the download phase end to end"""
        session = self.collect_download_session()
        self.preflight(session)

        session = session.with_pull_secret(self.ingest_secret())
        plan = emit_plan(session, self.settings)
        self._log_plan(plan)

        steps = self.provisioner(session).download_steps(plan)
        result = self.step_runner.run(plan, steps)
        self._finish(session, result)
        return result

    def upload(self) -> SessionResult:
        """Run the upload phase end to end"""
        session = self.collect_upload_session()
        self.preflight(session)

        steps = self.provisioner(session).upload_steps()
        result = self.step_runner.run(None, steps)
        self._finish(session, result)
        return result

    def _log_plan(self, plan: MirrorPlan):
        logger.info(f"Channel: {plan.channel}, versions {plan.min_version} - {plan.max_version}")
        if self.dry_run:
            logger.info("[Dry Run] ImageSetConfiguration:")
            for line in plan.render().splitlines():
                logger.info(f"  {line}")

    def _finish(self, session: MirrorSession, result: SessionResult):
        logger.info("=" * 53)
        if result.dry_run:
            logger.info(f"✓ Dry run completed: {result.summary()}")
        else:
            logger.info("✓ Local registry mirroring completed.")
            logger.info(f"Mirror registry available at: {session.registry_endpoint}")
        logger.info("=" * 53)


def setup_log_file(log_dir: str, phase: str) -> Optional[logging.FileHandler]:
    """Attach a timestamped log file capturing the whole session"""
    path = os.path.join(log_dir, f"mirror-{phase}-{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.log")
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(path, mode="a")
    except OSError as e:
        logger.warning(f"Cannot write log file {path}: {e}")
        return None
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    logging.getLogger().addHandler(handler)
    logger.info(f"Session log: {path}")
    return handler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ocp-mirror",
        description=f"OpenShift Disconnected Mirror Planner v{SCRIPT_VERSION}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Connected host: download tools, RPMs and images, answering prompts
  %(prog)s download

  # Preview the plan without changing anything
  %(prog)s download --version 4.19.5 --upgrade-version 4.19.7 --workdir /data --dry-run

  # Bastion host: install the registry and push the mirrored images
  %(prog)s upload --workdir /data --bastion bastion.example.com

Exit codes:
  1 invalid input, 2 missing directory or file, 3 insufficient disk space,
  4 missing tool, 5 invalid subscription, 6 invalid pull secret,
  7 network failure after retries, 8 one-shot step failed, 9 step failed
        """,
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help=f"Configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("--create-config", action="store_true", help="Create sample configuration file and exit")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--workdir", help="Working directory")
    common.add_argument("--bastion", help="Bastion host FQDN")
    common.add_argument("--username", help="Registry username")
    common.add_argument("--log-dir", help="Directory for the session log")
    common.add_argument("--retry-times", type=int, help="oc mirror retry count")
    common.add_argument("--retry-delay", type=int, help="oc mirror delay between retries (seconds)")
    common.add_argument("--dry-run", action="store_true", help="Validate and plan, but run no steps")
    common.add_argument("--verbose", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="phase")
    download = subparsers.add_parser(PHASE_DOWNLOAD, parents=[common], help="Prepare mirror content on a connected host")
    download.add_argument("--version", dest="ocp_version", help="OpenShift version (4.X.Y)")
    download.add_argument("--upgrade-version", help="Upgrade target version (same as --version if none)")
    download.add_argument("--pull-secret-file", help="Read the pull secret from a file instead of stdin")
    download.add_argument("--verify-release", action="store_true", help="Check the versions against the update graph")
    subparsers.add_parser(PHASE_UPLOAD, parents=[common], help="Publish mirrored content on the bastion host")
    return parser


def main(argv=None) -> int:
    """CLI entry point; returns the process exit code"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.create_config:
        create_sample_config(args.config)
        return EXIT_OK
    if not args.phase:
        parser.print_help()
        return EXIT_OK

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    overrides = {"LOG_DIR": args.log_dir, "RETRY_TIMES": args.retry_times, "RETRY_DELAY": args.retry_delay}
    if getattr(args, "verify_release", False):
        overrides["VERIFY_RELEASE"] = "true"

    try:
        settings = MirrorSettings.load(args.config)
        settings.apply({key: value for key, value in overrides.items() if value is not None})
    except (OSError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return InputError.exit_code

    answers = {
        "workdir": args.workdir,
        "bastion": args.bastion,
        "username": args.username,
        "version": getattr(args, "ocp_version", None),
        "upgrade_version": getattr(args, "upgrade_version", None),
        "pull_secret_file": getattr(args, "pull_secret_file", None),
    }

    handler = setup_log_file(settings.log_dir, args.phase)
    try:
        logger.info("=" * 60)
        logger.info(f"OpenShift Mirror Planner v{SCRIPT_VERSION} ({args.phase})")
        logger.info("=" * 60)

        orchestrator = MirrorOrchestrator(settings, answers=answers, dry_run=args.dry_run)
        if args.phase == PHASE_DOWNLOAD:
            orchestrator.download()
        else:
            orchestrator.upload()
        return EXIT_OK
    except MirrorError as e:
        logger.error(f"❌ {e}")
        if isinstance(e, PreconditionError) and len(e.failures) > 1:
            for failure in e.failures:
                logger.error(f"  ✗ {failure}")
        return e.exit_code
    except KeyboardInterrupt:
        logger.error("Interrupted by operator")
        return EXIT_INTERRUPTED
    finally:
        if handler is not None:
            logging.getLogger().removeHandler(handler)
            handler.close()


if __name__ == "__main__":
    sys.exit(main())
