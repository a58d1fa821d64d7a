"""
Input sources for interactive prompts.

The orchestrator only talks to an input source, so sessions can be driven
from a terminal or from a scripted answer list in tests.
"""

import getpass
import sys
from typing import Iterable, Optional, TextIO


class ConsolePrompter:
    """Reads answers from the terminal"""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream

    def ask(self, prompt: str) -> str:
        return input(prompt).strip()

    def ask_secret(self, prompt: str) -> str:
        return getpass.getpass(prompt)

    def read_stream(self, prompt: str) -> str:
        """Read everything until end of input (CTRL+D)"""
        print(prompt, flush=True)
        return (self.stream or sys.stdin).read()


class ScriptedPrompter:
    """Answers prompts from a fixed list, in order"""

    def __init__(self, answers: Iterable[str], stream_text: str = ""):
        self.answers = list(answers)
        self.stream_text = stream_text
        self.prompts = []

    def _next(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.answers:
            raise EOFError(f"No scripted answer for prompt: {prompt}")
        return self.answers.pop(0)

    def ask(self, prompt: str) -> str:
        return self._next(prompt).strip()

    def ask_secret(self, prompt: str) -> str:
        return self._next(prompt)

    def read_stream(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.stream_text
