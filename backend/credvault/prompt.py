import getpass
import sys
from typing import Optional, TextIO


class SecretInput:
    """Terminal prompts. Everything is written to stderr so stdout stays pipeable."""

    def __init__(self, stdin: Optional[TextIO] = None, stderr: Optional[TextIO] = None):
        self.stdin = stdin or sys.stdin
        self.stderr = stderr or sys.stderr

    def _readline(self, label: str) -> str:
        self.stderr.write(label)
        self.stderr.flush()
        line = self.stdin.readline()
        if not line:
            raise EOFError("no input")
        return line.rstrip("\r\n")

    def prompt(self, label: str) -> str:
        return self._readline(label)

    def prompt_hidden(self, label: str) -> str:
        if self.stdin.isatty():
            return getpass.getpass(label, stream=self.stderr)
        # piped input: read one line as-is so quotes, backslashes and $ survive
        value = self._readline(label)
        self.stderr.write("\n")
        return value
