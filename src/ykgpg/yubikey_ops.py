from __future__ import annotations

import logging

from .errors import (
    CommandTimeoutError,
    DetectionInconclusiveError,
    DetectionTimeoutError,
    TokenNotInitializedError,
    TokenUnsupportedError,
    YkgpgError,
)
from .executor import CommandExecutor
from .gpg_ops import GPGOperations
from .parser import parse_openpgp_support
from .types import CardStatus, Result

logger = logging.getLogger(__name__)

# gpg --card-status can block on PIN entry or card selection
DETECTION_TIMEOUT = 3.0

# scdaemon's wording when a token answers but has no usable OpenPGP applet
BLOCKED_MARKERS = ("Operation not supported by device", "OpenPGP card not available")
NOT_SUPPORTED_MARKER = "Operation not supported by device"


def _is_timeout(error: Exception) -> bool:
    while error is not None:
        if isinstance(error, CommandTimeoutError):
            return True
        error = error.cause if isinstance(error, YkgpgError) else None  # type: ignore[assignment]
    return False


class YubiKeyOperations:
    """Classifies the attached token as present, absent, or present but blocked."""

    def __init__(self, gpg: GPGOperations, executor: CommandExecutor) -> None:
        self._gpg = gpg
        self._executor = executor

    def is_present(self, timeout: float | None = DETECTION_TIMEOUT) -> Result[bool]:
        """Check whether a usable OpenPGP token is attached.

        Returns ok(True) when the card answers and ok(False) when nothing
        answers. A token that answers but cannot be used, or a query that
        times out, is returned as an error since neither means "absent".
        """
        status = self._gpg.card_status(timeout=timeout)
        if status.is_ok():
            return Result.ok(True)

        error = status.unwrap_err()
        if _is_timeout(error):
            return Result.err(DetectionTimeoutError(timeout or 0, cause=error))

        message = str(error)
        if any(marker in message for marker in BLOCKED_MARKERS):
            supports = self.supports_openpgp(timeout=timeout)
            if supports.is_ok() and not supports.unwrap():
                return Result.err(TokenUnsupportedError(cause=error))
            if supports.is_err():
                logger.debug("OpenPGP support undetermined: %s", supports.unwrap_err())
            return Result.err(TokenNotInitializedError(cause=error))

        logger.debug("card status failed, treating token as absent: %s", message)
        return Result.ok(False)

    def supports_openpgp(self, timeout: float | None = DETECTION_TIMEOUT) -> Result[bool]:
        """Probe whether the token offers the OpenPGP application at all.

        ``ykman info`` is the preferred signal; when it is missing or says
        nothing about OpenPGP the card status query decides.
        """
        info = self._executor.run("ykman", ["info"], timeout=timeout)
        if info.is_ok():
            verdict = parse_openpgp_support(info.unwrap().decode(errors="replace"))
            if verdict is not None:
                return Result.ok(verdict)
        else:
            logger.debug("ykman info unavailable: %s", info.unwrap_err())

        status = self._gpg.card_status(timeout=timeout)
        if status.is_ok():
            return Result.ok(True)

        error = status.unwrap_err()
        if NOT_SUPPORTED_MARKER in str(error):
            return Result.err(
                DetectionInconclusiveError(
                    "unable to determine if YubiKey supports OpenPGP. The device may not "
                    "support OpenPGP (some YubiKey models like Security Key don't), or the "
                    "OpenPGP applet may not be initialized",
                    cause=error,
                )
            )
        return Result.err(
            DetectionInconclusiveError(f"unable to check OpenPGP support: {error}", cause=error)
        )

    def get_card_info(self, timeout: float | None = None) -> Result[CardStatus]:
        status = self._gpg.card_status(timeout=timeout)
        if status.is_err() and _is_timeout(status.unwrap_err()):
            return Result.err(DetectionTimeoutError(timeout or 0, cause=status.unwrap_err()))
        return status

    def edit_card(self) -> Result[None]:
        return self._gpg.edit_card()


def token_available(executor: CommandExecutor | None = None) -> bool:
    """True when a usable token answers ``gpg --card-status``."""
    executor = executor or CommandExecutor()
    ops = YubiKeyOperations(GPGOperations(executor), executor)
    return ops.is_present().unwrap_or(False)
