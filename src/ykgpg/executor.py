from __future__ import annotations

import fnmatch
import logging
import os
import subprocess
from pathlib import Path

from .errors import CommandError, CommandTimeoutError, ToolNotFoundError
from .types import Result

logger = logging.getLogger(__name__)

# gpg --edit-key / --card-edit exit 2 when "save" finds nothing to write
BENIGN_EXIT_CODES: dict[str, int] = {"gpg": 2}


def is_benign_exit(program: str, exit_code: int) -> bool:
    return BENIGN_EXIT_CODES.get(Path(program).name) == exit_code


def controlling_terminal() -> str:
    """Best guess at the terminal device pinentry should talk to."""
    try:
        tty = os.readlink("/dev/fd/0")
    except OSError:
        tty = ""
    if tty.startswith("/dev/"):
        return tty
    return os.environ.get("GPG_TTY") or "/dev/tty"


class CommandExecutor:
    """Runs external programs for the GPG and YubiKey services.

    ``run`` captures stdout and is used for everything whose output is parsed.
    ``run_interactive`` hands the terminal to the child for PIN entry and the
    nested ``gpg --edit-key`` prompt.
    """

    def __init__(self, gnupghome: Path | None = None) -> None:
        self._gnupghome = gnupghome
        self._env = os.environ.copy()
        if gnupghome:
            self._env["GNUPGHOME"] = str(gnupghome)

    @property
    def env(self) -> dict[str, str]:
        return self._env

    def run(
        self,
        program: str,
        args: list[str],
        timeout: float | None = None,
        input_bytes: bytes | None = None,
    ) -> Result[bytes]:
        cmd = [program] + args
        logger.debug("run: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                env=self._env,
                input=input_bytes,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("%s timed out after %ss", program, timeout)
            return Result.err(CommandTimeoutError(program, args, timeout or 0, cause=e))
        except OSError as e:
            return Result.err(ToolNotFoundError(program, cause=e))

        if result.returncode != 0:
            stderr = result.stderr.decode(errors="replace") if result.stderr else ""
            return Result.err(CommandError(program, args, result.returncode, stderr))

        return Result.ok(result.stdout)

    def run_interactive(self, program: str, args: list[str]) -> Result[None]:
        cmd = [program] + args
        env = dict(self._env)
        env["GPG_TTY"] = controlling_terminal()
        logger.debug("run_interactive: %s (GPG_TTY=%s)", " ".join(cmd), env["GPG_TTY"])
        try:
            result = subprocess.run(cmd, env=env)
        except OSError as e:
            return Result.err(ToolNotFoundError(program, cause=e))

        if result.returncode != 0:
            if is_benign_exit(program, result.returncode):
                logger.debug("%s exited %d with no changes to save", program, result.returncode)
                return Result.ok(None)
            return Result.err(CommandError(program, args, result.returncode))

        return Result.ok(None)


class MockExecutor(CommandExecutor):
    """Scripted executor for tests - records calls and returns preset output.

    Responses are keyed by the full command line (``"gpg --card-status"``).
    Keys containing ``*`` are matched as shell-style patterns, which covers
    commands that embed temporary file names.
    """

    def __init__(self) -> None:
        super().__init__()
        self.outputs: dict[str, bytes] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[list[str]] = []
        self.interactive_calls: list[list[str]] = []
        self.timeouts: list[float | None] = []
        self.inputs: list[bytes | None] = []
        self.sequences: dict[str, list[bytes]] = {}

    def set_output(self, command: str, output: bytes | str) -> None:
        self.outputs[command] = output.encode() if isinstance(output, str) else output

    def queue_outputs(self, command: str, *outputs: bytes | str) -> None:
        """Return each output in turn for ``command``; the last one repeats."""
        self.sequences[command] = [o.encode() if isinstance(o, str) else o for o in outputs]

    def set_error(self, command: str, error: Exception) -> None:
        self.errors[command] = error

    def _lookup(self, table: dict[str, object], key: str) -> object | None:
        if key in table:
            return table[key]
        for pattern, value in table.items():
            if "*" in pattern and fnmatch.fnmatchcase(key, pattern):
                return value
        return None

    def run(
        self,
        program: str,
        args: list[str],
        timeout: float | None = None,
        input_bytes: bytes | None = None,
    ) -> Result[bytes]:
        cmd = [program] + args
        self.calls.append(cmd)
        self.timeouts.append(timeout)
        self.inputs.append(input_bytes)
        key = " ".join(cmd)

        error = self._lookup(self.errors, key)  # type: ignore[arg-type]
        if isinstance(error, Exception):
            return Result.err(error)
        sequence = self.sequences.get(key)
        if sequence:
            return Result.ok(sequence.pop(0) if len(sequence) > 1 else sequence[0])
        output = self._lookup(self.outputs, key)  # type: ignore[arg-type]
        return Result.ok(output if isinstance(output, bytes) else b"")

    def run_interactive(self, program: str, args: list[str]) -> Result[None]:
        cmd = [program] + args
        self.interactive_calls.append(cmd)
        error = self._lookup(self.errors, " ".join(cmd))  # type: ignore[arg-type]
        if isinstance(error, Exception):
            return Result.err(error)
        return Result.ok(None)

    def verify_call(self, program: str, *args: str) -> bool:
        expected = [program, *args]
        return expected in self.calls or expected in self.interactive_calls

    def count_calls(self, program: str, *args: str) -> int:
        """Number of captured and interactive calls starting with the given words."""
        prefix = [program, *args]
        return sum(
            1 for call in self.calls + self.interactive_calls if call[: len(prefix)] == prefix
        )

    def reset(self) -> None:
        self.outputs.clear()
        self.sequences.clear()
        self.errors.clear()
        self.calls.clear()
        self.interactive_calls.clear()
        self.timeouts.clear()
        self.inputs.clear()
