"""
Error taxonomy for the mirror planner.

Every failure carries the process exit code the CLI reports for it.
"""

from typing import List, Optional

EXIT_OK = 0
EXIT_INVALID_INPUT = 1
EXIT_MISSING_PATH = 2
EXIT_DISK_SPACE = 3
EXIT_MISSING_TOOL = 4
EXIT_SUBSCRIPTION = 5
EXIT_INVALID_SECRET = 6
EXIT_TRANSIENT = 7
EXIT_MUTATION = 8
EXIT_STEP_FAILED = 9
EXIT_INTERRUPTED = 130


class MirrorError(Exception):
    """Base class for every failure that halts a session"""

    exit_code = EXIT_STEP_FAILED

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code


# ---- input errors ----

class InputError(MirrorError):
    """Malformed or inconsistent user input"""

    exit_code = EXIT_INVALID_INPUT


class InvalidVersionFormat(InputError):
    pass


class InvertedOrder(InputError):
    pass


class UnreachableHost(InputError):
    pass


class InvalidSecret(InputError):
    exit_code = EXIT_INVALID_SECRET


# ---- precondition errors ----

class PreconditionError(MirrorError):
    """Environment is not ready; raised before anything is mutated"""

    exit_code = EXIT_MISSING_PATH

    def __init__(self, message: str, exit_code: Optional[int] = None, failures: Optional[List[str]] = None):
        super().__init__(message, exit_code)
        self.failures = failures or [message]


class MissingPathError(PreconditionError):
    exit_code = EXIT_MISSING_PATH


class MissingToolError(PreconditionError):
    exit_code = EXIT_MISSING_TOOL

    def __init__(self, tools: List[str]):
        super().__init__(f"Missing required commands: {', '.join(tools)}")
        self.tools = list(tools)


# ---- step errors ----

class CommandError(MirrorError):
    """An external command exited non-zero"""

    def __init__(self, command: List[str], returncode: int, output: str = ""):
        super().__init__(f"Command '{command[0]}' failed with code {returncode}")
        self.command = list(command)
        self.returncode = returncode
        self.output = output


class StepError(MirrorError):
    """A provisioning step failed; the session halted at that step"""

    exit_code = EXIT_STEP_FAILED

    def __init__(self, step_name: str, index: int, cause: Optional[BaseException] = None, message: str = ""):
        detail = message or (str(cause) if cause else "step failed")
        super().__init__(f"Halted at step {index} ({step_name}): {detail}")
        self.step_name = step_name
        self.index = index
        self.cause = cause


class TransientError(StepError):
    """Network or download failure that may succeed on retry"""

    exit_code = EXIT_TRANSIENT

    def __init__(self, message: str, step_name: str = "", index: int = 0, cause: Optional[BaseException] = None):
        MirrorError.__init__(self, message)
        self.step_name = step_name
        self.index = index
        self.cause = cause

    def at_step(self, step_name: str, index: int) -> "TransientError":
        return TransientError(
            f"Halted at step {index} ({step_name}): {self.message}",
            step_name=step_name,
            index=index,
            cause=self,
        )


class MutationError(StepError):
    """A one-shot external action failed; manual inspection is required"""

    exit_code = EXIT_MUTATION
