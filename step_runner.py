"""
Sequential execution of provisioning steps.

Each step is an external-process invocation or a filesystem mutation.
The runner only sequences and gates them: it checks required tools,
skips work that is already done, retries transient failures and turns
the final failure into a typed error naming the step it halted at.
"""

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from mirror_errors import (
    CommandError,
    InputError,
    MirrorError,
    MissingToolError,
    MutationError,
    PreconditionError,
    StepError,
    TransientError,
)

logger = logging.getLogger(__name__)

MASK = "********"


class Idempotency(str, Enum):
    REPEATABLE = "repeatable"
    ONE_SHOT = "one-shot"


class FailurePolicy(str, Enum):
    ABORT = "abort"
    CONTINUE = "continue"


@dataclass
class ProvisioningStep:
    """One ordered unit of work in a provisioning session"""

    name: str
    action: Callable[..., None]
    idempotency: Idempotency = Idempotency.REPEATABLE
    policy: FailurePolicy = FailurePolicy.ABORT
    retries: int = 0
    retry_delay: float = 0
    requires: Tuple[str, ...] = ()
    done: Optional[Callable[[], bool]] = None

    def __post_init__(self):
        if self.idempotency is Idempotency.ONE_SHOT and self.retries:
            raise ValueError(f"One-shot step '{self.name}' cannot be retried")

    @property
    def description(self) -> str:
        """First line of the action's docstring"""
        action = getattr(self.action, "func", self.action)
        doc = (getattr(action, "__doc__", None) or "").strip()
        return doc.splitlines()[0] if doc else ""


@dataclass
class SessionResult:
    completed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    continued: List[str] = field(default_factory=list)
    planned: List[str] = field(default_factory=list)
    dry_run: bool = False

    def summary(self) -> str:
        if self.dry_run:
            return f"{len(self.planned)} steps planned (dry run)"
        return (
            f"{len(self.completed)} completed, {len(self.skipped)} already done, "
            f"{len(self.continued)} failed and continued"
        )


class CommandRunner:
    """Runs external commands, streaming their output into the log"""

    def __init__(self, env: Optional[Dict[str, str]] = None, use_sudo: bool = True):
        self.env = dict(env or {})
        self.use_sudo = use_sudo

    def _needs_sudo(self, sudo: bool) -> bool:
        return sudo and self.use_sudo and os.geteuid() != 0

    def run(
        self,
        command: Sequence[str],
        sudo: bool = False,
        input_text: Optional[str] = None,
        secrets: Sequence[str] = (),
        check: bool = True,
    ) -> subprocess.CompletedProcess:
        """Execute command and return the completed process

        Raises CommandError on a non-zero exit (when check is set) and
        MissingToolError when the executable cannot be found.
        """
        cmd = list(command)
        if self._needs_sudo(sudo):
            cmd = ["sudo"] + cmd

        shown = " ".join(MASK if part in secrets and part else part for part in cmd)
        logger.info(f"Executing: {shown}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if input_text is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                env={**os.environ, **self.env},
            )
        except FileNotFoundError:
            raise MissingToolError([cmd[0]])

        if input_text is not None:
            process.stdin.write(input_text)
            process.stdin.close()

        output = []
        for line in iter(process.stdout.readline, ""):
            line = line.rstrip()
            for secret in secrets:
                if secret:
                    line = line.replace(secret, MASK)
            output.append(line)
            logger.info(line)
        process.stdout.close()
        returncode = process.wait()

        text = "\n".join(output)
        if check and returncode != 0:
            logger.error(f"Command failed with code {returncode}: {shown}")
            raise CommandError(cmd, returncode, text)
        return subprocess.CompletedProcess(cmd, returncode, text, None)


class StepRunner:
    """Executes provisioning steps strictly in declared order"""

    def __init__(
        self,
        which: Callable[[str], Optional[str]] = shutil.which,
        sleep: Callable[[float], None] = time.sleep,
        dry_run: bool = False,
    ):
        self.which = which
        self.sleep = sleep
        self.dry_run = dry_run

    def run(self, plan, steps: Sequence[ProvisioningStep]) -> SessionResult:
        """Run steps in order, halting at the first failure unless its policy says continue"""
        result = SessionResult(dry_run=self.dry_run)
        total = len(steps)

        for index, step in enumerate(steps, 1):
            label = f"[{index}/{total}] {step.name}"

            if self.dry_run:
                description = f": {step.description}" if step.description else ""
                logger.info(f"[Dry Run] {label}{description} ({step.idempotency.value}, on failure: {step.policy.value})")
                result.planned.append(step.name)
                continue

            missing = [tool for tool in step.requires if not self.which(tool)]
            if missing:
                logger.error(f"✗ {label}: missing required commands: {', '.join(missing)}")
                raise MissingToolError(missing)

            if step.done is not None and step.done():
                logger.info(f"✓ {label}: already done, skipping")
                result.skipped.append(step.name)
                continue

            logger.info(f"▶ {label}")
            try:
                self._execute(plan, step, index)
            except MirrorError as e:
                if step.policy is FailurePolicy.CONTINUE:
                    logger.warning(f"⚠ {label} failed, continuing: {e}")
                    result.continued.append(step.name)
                    continue
                logger.error(f"✗ Session halted at step {index} ({step.name}): {e}")
                if step.idempotency is Idempotency.ONE_SHOT:
                    logger.error("This step is not safe to repeat. Inspect the host and clean up before retrying.")
                raise

            result.completed.append(step.name)
            logger.info(f"✓ {label} completed")

        logger.info(f"Session finished: {result.summary()}")
        return result

    def _execute(self, plan, step: ProvisioningStep, index: int):
        attempts = step.retries + 1
        delay = step.retry_delay

        for attempt in range(1, attempts + 1):
            try:
                step.action(plan)
                return
            except TransientError as e:
                if attempt < attempts:
                    logger.warning(f"{step.name} failed (attempt {attempt}/{attempts}): {e}. Retrying in {delay}s...")
                    self.sleep(delay)
                    delay *= 2
                    continue
                if attempts > 1:
                    logger.error(f"{step.name} failed after {attempts} attempts")
                if step.idempotency is Idempotency.ONE_SHOT:
                    raise MutationError(step.name, index, e)
                raise e.at_step(step.name, index)
            except (InputError, PreconditionError):
                raise
            except (CommandError, StepError, OSError) as e:
                if step.idempotency is Idempotency.ONE_SHOT:
                    raise MutationError(step.name, index, e)
                raise StepError(step.name, index, e)
