from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path
from typing import TypeVar

from .errors import CommandError, GPGOperationError
from .executor import CommandExecutor
from .parser import parse_card_status, parse_key_list
from .types import CardStatus, KeyRecord, Result

T = TypeVar("T")

GPG = "gpg"
SIGN_TEST_INPUT = b"test\n"
# stderr of a listing whose filter matched no secret key
NO_SECRET_KEY_MARKER = "No secret key"


class GPGOperations:
    """One method per gpg invocation the tool relies on.

    The argument vectors here are stable: scripts and the parsers both
    depend on gpg being called exactly this way.
    """

    def __init__(self, executor: CommandExecutor) -> None:
        self._executor = executor

    @property
    def executor(self) -> CommandExecutor:
        return self._executor

    @staticmethod
    def _wrap(operation: str, result: Result[T]) -> Result[T]:
        if result.is_ok():
            return result
        cause = result.unwrap_err()
        return Result.err(
            GPGOperationError(f"failed to {operation}: {cause}", operation=operation, cause=cause)
        )

    def _run_gpg(
        self,
        operation: str,
        args: list[str],
        timeout: float | None = None,
        input_bytes: bytes | None = None,
    ) -> Result[bytes]:
        return self._wrap(
            operation,
            self._executor.run(GPG, args, timeout=timeout, input_bytes=input_bytes),
        )

    def _run_gpg_interactive(self, operation: str, args: list[str]) -> Result[None]:
        return self._wrap(operation, self._executor.run_interactive(GPG, args))

    def list_secret_keys(self, key_id: str) -> Result[list[KeyRecord]]:
        """List secret keys matching ``key_id``.

        gpg exits 2 with "No secret key" when the filter matches nothing; that
        is an empty listing, not a failure.
        """
        result = self._executor.run(
            GPG, ["--list-secret-keys", "--keyid-format=long", key_id]
        )
        if result.is_err():
            error = result.unwrap_err()
            if (
                isinstance(error, CommandError)
                and error.exit_code == 2
                and NO_SECRET_KEY_MARKER in error.stderr
            ):
                return Result.ok([])
        return self._wrap("list secret keys", result).map(
            lambda out: parse_key_list(out.decode(errors="replace"))
        )

    def list_secret_keys_text(self) -> Result[str]:
        """Raw listing of the whole secret keyring, for display."""
        return self._run_gpg(
            "list secret keys", ["--list-secret-keys", "--keyid-format=long"]
        ).map(lambda out: out.decode(errors="replace"))

    def card_status(self, timeout: float | None = None) -> Result[CardStatus]:
        return self._run_gpg("get card status", ["--card-status"], timeout=timeout).map(
            lambda out: parse_card_status(out.decode(errors="replace"))
        )

    def export_public_key(self, key_id: str) -> Result[bytes]:
        return self._run_gpg("export public key", ["--export", "--armor", key_id])

    def export_secret_subkeys(self, key_id: str) -> Result[bytes]:
        """Export secret subkeys only; the primary key material is never included."""
        return self._run_gpg("export secret subkeys", ["--export-secret-subkeys", key_id])

    def delete_secret_key(self, fingerprint: str) -> Result[None]:
        return self._run_gpg(
            "delete secret key", ["--batch", "--yes", "--delete-secret-keys", fingerprint]
        ).map(lambda _: None)

    def delete_public_key(self, key_id: str) -> Result[None]:
        return self._run_gpg(
            "delete public key", ["--batch", "--yes", "--delete-keys", key_id]
        ).map(lambda _: None)

    def import_key(self, key_data: bytes) -> Result[None]:
        """Import key material via a private temporary file.

        The file is created 0600 and removed whether or not the import works.
        """
        try:
            fd, tmp_name = tempfile.mkstemp(prefix="gpg-import-", suffix=".gpg")
        except OSError as e:
            return Result.err(
                GPGOperationError(
                    f"failed to create temp file: {e}", operation="import key", cause=e
                )
            )

        try:
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(key_data)
            except OSError as e:
                return Result.err(
                    GPGOperationError(
                        f"failed to write key data: {e}", operation="import key", cause=e
                    )
                )
            return self._run_gpg("import key", ["--import", tmp_name]).map(lambda _: None)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)

    def import_key_file(self, path: Path) -> Result[None]:
        return self._run_gpg("import key file", ["--import", str(path)]).map(lambda _: None)

    def export_ownertrust(self) -> Result[bytes]:
        return self._run_gpg("export ownertrust", ["--export-ownertrust"])

    def check_trustdb(self) -> Result[None]:
        return self._run_gpg("check trustdb", ["--check-trustdb"]).map(lambda _: None)

    def edit_key(self, key_id: str) -> Result[None]:
        """Open ``gpg --edit-key`` on the operator's terminal."""
        return self._run_gpg_interactive("edit key", ["--edit-key", key_id])

    def edit_card(self) -> Result[None]:
        return self._run_gpg_interactive("edit card", ["--card-edit"])

    def send_keys(self, keyserver: str, key_id: str) -> Result[None]:
        return self._run_gpg(
            "upload key to keyserver", ["--keyserver", keyserver, "--send-keys", key_id]
        ).map(lambda _: None)

    def quick_add_signing_subkey(self, fingerprint: str, expiry: str) -> Result[None]:
        """Create an ed25519 signing subkey; the passphrase is read from the terminal."""
        return self._run_gpg_interactive(
            "create signing subkey",
            [
                "--batch",
                "--passphrase-fd",
                "0",
                "--quick-add-key",
                fingerprint,
                "ed25519",
                "sign",
                expiry,
            ],
        )

    def sign_test_message(self, key_id: str, timeout: float | None = None) -> Result[None]:
        """Sign a short message without prompting; fails if a PIN is needed."""
        return self._run_gpg(
            "sign test message",
            ["--batch", "--pinentry-mode=loopback", "--default-key", key_id, "--sign", "--armor"],
            timeout=timeout,
            input_bytes=SIGN_TEST_INPUT,
        ).map(lambda _: None)

    def sign_test_file(self, key_id: str) -> Result[None]:
        """Sign a temporary file with pinentry free to prompt on the terminal."""
        fd, tmp_name = tempfile.mkstemp(prefix="ykgpg-test-", suffix=".txt")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(SIGN_TEST_INPUT)
            return self._run_gpg_interactive(
                "sign test file",
                [
                    "--quiet",
                    "--yes",
                    "--default-key",
                    key_id,
                    "--sign",
                    "--armor",
                    "--output",
                    os.devnull,
                    tmp_name,
                ],
            )
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(tmp_name)
