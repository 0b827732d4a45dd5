"""Structured error types with recovery hints for GPG and YubiKey operations.

Every failure that crosses a service boundary is carried as a ``YkgpgError``
subclass so the CLI can print the message, the underlying cause, and the
exact manual commands an operator can run next.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, auto
from pathlib import Path

DEFAULT_ERROR_LOG = Path.home() / ".config" / "ykgpg" / "errors.log"


class ErrorCategory(Enum):
    """Categories of errors for routing recovery strategies."""

    ENVIRONMENT = auto()  # Missing tools
    COMMAND = auto()  # Non-zero exit from an external program
    TIMEOUT = auto()  # Bounded query exceeded its deadline
    HARDWARE = auto()  # Token absent, blocked, or unsupported
    GPG = auto()  # GPG operation failures
    STORAGE = auto()  # Backup directory and file errors
    CONFIG = auto()  # Invalid or incomplete configuration
    USER_INPUT = auto()  # Cancelled operations
    STATE = auto()  # Keyring or token not in the state a command needs
    INTERNAL = auto()


@dataclass
class RecoveryHint:
    """A suggested recovery action for an error."""

    action: str
    command: str | None = None
    documentation_url: str | None = None

    def __str__(self) -> str:
        result = self.action
        if self.command:
            result += f"\n  Command: {self.command}"
        if self.documentation_url:
            result += f"\n  See: {self.documentation_url}"
        return result


@dataclass
class YkgpgError(Exception):
    """Base error type with recovery hints."""

    message: str
    category: ErrorCategory
    recovery_hints: list[RecoveryHint] = field(default_factory=list)
    cause: Exception | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __str__(self) -> str:
        return self.message

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def format_full(self) -> str:
        """Format error with all recovery hints."""
        lines = [f"Error: {self.message}"]

        if self.cause:
            lines.append(f"Caused by: {self.cause}")

        if self.recovery_hints:
            lines.append("\nRecovery options:")
            for i, hint in enumerate(self.recovery_hints, 1):
                lines.append(f"  {i}. {hint}")

        return "\n".join(lines)


class ToolNotFoundError(YkgpgError):
    """An external program could not be launched."""

    def __init__(
        self,
        program: str,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        install_commands = {
            "gpg": "brew install gnupg" if sys.platform == "darwin" else "apt install gnupg2",
            "ykman": "brew install ykman"
            if sys.platform == "darwin"
            else "pip install yubikey-manager",
            "git": "brew install git" if sys.platform == "darwin" else "apt install git",
        }
        if program in install_commands:
            hints.append(RecoveryHint(f"Install {program}", command=install_commands[program]))
        hints.append(
            RecoveryHint(f"Check that {program} is on your PATH", command=f"which {program}")
        )

        super().__init__(
            message=f"failed to execute command: {program} not found or not executable",
            category=ErrorCategory.ENVIRONMENT,
            recovery_hints=hints,
            cause=cause,
        )
        self.program = program


class CommandError(YkgpgError):
    """An external program exited with a non-zero status."""

    def __init__(
        self,
        program: str,
        args: list[str],
        exit_code: int,
        stderr: str = "",
    ) -> None:
        message = f"command failed with exit code {exit_code}"
        if stderr.strip():
            message += f": {stderr.strip()}"

        super().__init__(
            message=message,
            category=ErrorCategory.COMMAND,
            recovery_hints=get_recovery_hints_for_message(stderr),
        )
        self.program = program
        self.argv = list(args)
        self.exit_code = exit_code
        self.stderr = stderr

    @property
    def command_line(self) -> str:
        return " ".join([self.program, *self.argv])


class CommandTimeoutError(YkgpgError):
    """A bounded external command did not finish in time."""

    def __init__(
        self,
        program: str,
        args: list[str],
        timeout: float,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message=f"command timed out after {timeout:g}s: {' '.join([program, *args])}",
            category=ErrorCategory.TIMEOUT,
            recovery_hints=[],
            cause=cause,
        )
        self.program = program
        self.argv = list(args)
        self.timeout = timeout


class GPGOperationError(YkgpgError):
    """Error during a GPG operation, named after what was being attempted."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        gpg_output: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []

        if gpg_output is None and isinstance(cause, CommandError):
            gpg_output = cause.stderr

        if gpg_output:
            lower = gpg_output.lower()
            if "permission denied" in lower:
                hints.append(RecoveryHint("Check GNUPGHOME directory permissions"))
            if "no secret key" in lower:
                hints.append(
                    RecoveryHint(
                        "Check the key is in your keyring",
                        command="gpg --list-secret-keys --keyid-format=long",
                    )
                )
            if "agent" in lower:
                hints.append(
                    RecoveryHint(
                        "Restart GPG agent",
                        command="gpgconf --kill gpg-agent",
                    )
                )
            if "card error" in lower:
                hints.append(
                    RecoveryHint(
                        "Reset card connection",
                        command="gpg --card-status",
                    )
                )

        if isinstance(cause, YkgpgError):
            hints.extend(h for h in cause.recovery_hints if h not in hints)
        elif cause is not None:
            hints.extend(get_recovery_hints_for_message(str(cause)))

        super().__init__(
            message=message,
            category=ErrorCategory.GPG,
            recovery_hints=hints,
            cause=cause,
        )
        self.operation = operation
        self.gpg_output = gpg_output


class HardwareError(YkgpgError):
    """Error related to the hardware token."""

    def __init__(
        self,
        message: str,
        hints: list[RecoveryHint] | None = None,
        cause: Exception | None = None,
    ) -> None:
        if hints is None:
            hints = [
                RecoveryHint("Ensure YubiKey is properly inserted"),
                RecoveryHint("Try a different USB port"),
                RecoveryHint("Check YubiKey is detected", command="ykman info"),
            ]

        super().__init__(
            message=message,
            category=ErrorCategory.HARDWARE,
            recovery_hints=hints,
            cause=cause,
        )


class TokenUnsupportedError(HardwareError):
    """Token is attached but its hardware has no OpenPGP application."""

    def __init__(self, cause: Exception | None = None) -> None:
        super().__init__(
            "YubiKey detected but does not support OpenPGP. "
            "This YubiKey model (Security Key series) only supports FIDO2/U2F. "
            "Only YubiKey 4, 5, and some NEO models support OpenPGP.",
            hints=[
                RecoveryHint("Use a YubiKey 5 series (or YubiKey 4) token for OpenPGP keys"),
                RecoveryHint("Check which applications the token offers", command="ykman info"),
            ],
            cause=cause,
        )


class TokenNotInitializedError(HardwareError):
    """Token supports OpenPGP but the application has not been set up."""

    def __init__(self, cause: Exception | None = None) -> None:
        super().__init__(
            "YubiKey detected but not initialized for OpenPGP. "
            "Please initialize it first using 'gpg --card-edit' or 'ykman openpgp reset'",
            hints=[
                RecoveryHint("Open the card editor and run 'admin'", command="gpg --card-edit"),
                RecoveryHint(
                    "Reset the OpenPGP application (erases any keys on the token)",
                    command="ykman openpgp reset",
                ),
                RecoveryHint("Or run the guided card setup", command="ykgpg init"),
            ],
            cause=cause,
        )


class DetectionInconclusiveError(HardwareError):
    """None of the available signals could establish OpenPGP support."""

    def __init__(self, message: str | None = None, cause: Exception | None = None) -> None:
        super().__init__(
            message
            or "unable to determine if YubiKey supports OpenPGP. "
            "Please check your YubiKey model and ensure it supports OpenPGP",
            hints=[
                RecoveryHint("Query the card directly", command="gpg --card-status"),
                RecoveryHint("List the token's applications", command="ykman info"),
            ],
            cause=cause,
        )


class DetectionTimeoutError(HardwareError):
    """Card status query did not answer within the detection timeout."""

    def __init__(self, timeout: float, cause: Exception | None = None) -> None:
        super().__init__(
            f"YubiKey detection timed out after {timeout:g}s; the token state is unknown",
            hints=[
                RecoveryHint("GPG may be waiting for a PIN or touch; check for a pinentry window"),
                RecoveryHint("If several tokens are attached, remove all but one"),
                RecoveryHint("Restart the smartcard daemon", command="gpgconf --kill scdaemon"),
                RecoveryHint("Query the card manually", command="gpg --card-status"),
            ],
            cause=cause,
        )
        self.timeout = timeout


class MasterKeyError(YkgpgError):
    """A master-key offline/online transition could not complete."""

    def __init__(
        self,
        message: str,
        recovery_command: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if recovery_command:
            hints.append(RecoveryHint("Restore manually", command=recovery_command))
        hints.append(
            RecoveryHint(
                "Inspect the keyring state",
                command="gpg --list-secret-keys --keyid-format=long",
            )
        )

        super().__init__(
            message=message,
            category=ErrorCategory.GPG,
            recovery_hints=hints,
            cause=cause,
        )
        self.recovery_command = recovery_command


class BackupError(YkgpgError):
    """Error while writing a keyring backup."""

    def __init__(
        self,
        message: str,
        backup_path: Path | str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if backup_path:
            hints.append(RecoveryHint(f"Inspect the partial backup at {backup_path}"))
        hints.extend(
            [
                RecoveryHint("Verify the backup directory is writable"),
                RecoveryHint("Choose another location", command="ykgpg --backup-dir <path> ..."),
            ]
        )

        super().__init__(
            message=message,
            category=ErrorCategory.STORAGE,
            recovery_hints=hints,
            cause=cause,
        )
        self.backup_path = backup_path


class ConfigError(YkgpgError):
    """Configuration is missing, malformed, or incomplete."""

    def __init__(
        self,
        message: str,
        config_path: Path | str | None = None,
        cause: Exception | None = None,
    ) -> None:
        hints = []
        if config_path:
            hints.append(RecoveryHint(f"Check the file at {config_path}"))
        hints.extend(
            [
                RecoveryHint("Create a configuration interactively", command="ykgpg config init"),
                RecoveryHint("Show effective settings", command="ykgpg config show"),
            ]
        )

        super().__init__(
            message=message,
            category=ErrorCategory.CONFIG,
            recovery_hints=hints,
            cause=cause,
        )
        self.config_path = config_path


class WorkflowError(YkgpgError):
    """A guided command cannot continue from the current keyring or token state."""

    def __init__(
        self,
        message: str,
        hints: list[RecoveryHint] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.STATE,
            recovery_hints=hints or [],
            cause=cause,
        )


class VerificationError(WorkflowError):
    """One or more setup checks failed."""

    def __init__(self, failures: int) -> None:
        super().__init__(
            f"verification failed: {failures} check(s) failed",
            hints=[
                RecoveryHint("Show keyring and token state", command="ykgpg status"),
                RecoveryHint("Query the card directly", command="gpg --card-status"),
            ],
        )
        self.failures = failures


class UserCancelledError(YkgpgError):
    """Error when user cancels an operation."""

    def __init__(
        self,
        message: str = "Operation cancelled by user",
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message=message,
            category=ErrorCategory.USER_INPUT,
            recovery_hints=[],
            cause=cause,
        )


# Error logging


class ErrorLogger:
    """Logger for structured error tracking."""

    def __init__(self, log_path: Path | None = None) -> None:
        self._log_path = log_path or DEFAULT_ERROR_LOG
        self._logger = logging.getLogger("ykgpg.errors")
        self._setup_logging()

    def _setup_logging(self) -> None:
        """Configure file logging."""
        self._log_path.parent.mkdir(parents=True, exist_ok=True)

        for existing in self._logger.handlers:
            if (
                isinstance(existing, logging.FileHandler)
                and Path(existing.baseFilename) == self._log_path.resolve()
            ):
                return

        handler = logging.FileHandler(self._log_path)
        handler.setLevel(logging.WARNING)
        formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
        handler.setFormatter(formatter)

        self._logger.addHandler(handler)
        self._logger.setLevel(logging.WARNING)
        # surfaced errors reach the console through Prompts.show_error only
        self._logger.propagate = False

    @property
    def log_path(self) -> Path:
        return self._log_path

    def log_error(self, error: YkgpgError) -> None:
        """Append one line per error, plus any recovery commands offered."""
        context = {
            "category": error.category.name,
            "error_message": error.message,
            "timestamp": error.timestamp.isoformat(),
        }
        if error.cause:
            context["cause"] = str(error.cause)

        self._logger.error("[%s] %s", error.category.name, error.message, extra=context)
        for hint in error.recovery_hints:
            if hint.command:
                self._logger.warning("  recovery: %s", hint.command)


# Common error patterns and their solutions

COMMON_ERROR_PATTERNS: dict[str, list[RecoveryHint]] = {
    "card error": [
        RecoveryHint("Restart pcscd service", command="sudo systemctl restart pcscd"),
        RecoveryHint("Remove and reinsert YubiKey"),
    ],
    "no such device": [
        RecoveryHint("Ensure YubiKey is inserted"),
        RecoveryHint("Restart the smartcard daemon", command="gpgconf --kill scdaemon"),
    ],
    "permission denied": [
        RecoveryHint("Check file permissions"),
        RecoveryHint("Add user to plugdev group", command="sudo usermod -aG plugdev $USER"),
    ],
    "gpg agent": [
        RecoveryHint("Kill and restart GPG agent", command="gpgconf --kill all"),
        RecoveryHint("Check socket permissions in ~/.gnupg"),
    ],
    "pinentry": [
        RecoveryHint("Install pinentry", command="apt install pinentry-curses"),
        RecoveryHint("Set pinentry program in gpg-agent.conf"),
    ],
    "inappropriate ioctl": [
        RecoveryHint("Point GPG at your terminal", command="export GPG_TTY=$(tty)"),
    ],
}


def get_recovery_hints_for_message(error_message: str) -> list[RecoveryHint]:
    """Get recovery hints based on error message patterns."""
    hints = []
    lower_message = error_message.lower()

    for pattern, pattern_hints in COMMON_ERROR_PATTERNS.items():
        if pattern in lower_message:
            hints.extend(pattern_hints)

    return hints
