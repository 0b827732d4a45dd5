from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

from .errors import BackupError
from .gpg_ops import GPGOperations
from .parser import format_key_list
from .types import BackupRecord, Result

logger = logging.getLogger(__name__)

PUBLIC_KEY_FILE = "public-key.asc"
TRUSTDB_FILE = "trustdb.txt"
KEY_LIST_FILE = "key-list.txt"

EXPECTED_BACKUP_FILES = [
    PUBLIC_KEY_FILE,  # Armored public key
    TRUSTDB_FILE,  # gpg --export-ownertrust
    KEY_LIST_FILE,  # Rendered secret key listing
]


def create_backup_directory(backup_root: Path, now: datetime | None = None) -> Result[Path]:
    """Create a fresh ``gpg-backup-YYYYmmdd-HHMMSS`` directory.

    An existing backup is never reused: a second backup in the same second
    gets a ``-1``, ``-2``, ... suffix.
    """
    timestamp = (now or datetime.now(UTC)).strftime("%Y%m%d-%H%M%S")
    base = f"gpg-backup-{timestamp}"
    full_path = backup_root / base

    try:
        backup_root.mkdir(parents=True, exist_ok=True)
        suffix = 0
        while True:
            try:
                full_path.mkdir()
                return Result.ok(full_path)
            except FileExistsError:
                suffix += 1
                full_path = backup_root / f"{base}-{suffix}"
    except OSError as e:
        return Result.err(
            BackupError(f"failed to create backup directory: {e}", backup_path=full_path, cause=e)
        )


def _write(path: Path, data: bytes, what: str) -> Result[None]:
    try:
        path.write_bytes(data)
        return Result.ok(None)
    except OSError as e:
        return Result.err(
            BackupError(f"failed to write {what} backup: {e}", backup_path=path.parent, cause=e)
        )


def create_backup(
    gpg: GPGOperations,
    key_id: str,
    backup_root: Path,
    now: datetime | None = None,
) -> Result[BackupRecord]:
    """Back up the public key, ownertrust and key listing for ``key_id``.

    Files are written in order and the first failure stops the backup. A
    partly written directory is left in place for inspection.
    """
    created_at = now or datetime.now(UTC)
    dir_result = create_backup_directory(backup_root.expanduser(), created_at)
    if dir_result.is_err():
        return Result.err(dir_result.unwrap_err())
    backup_path = dir_result.unwrap()

    def fail(message: str, cause: Exception) -> Result[BackupRecord]:
        logger.warning("backup at %s is incomplete: %s", backup_path, message)
        return Result.err(BackupError(message, backup_path=backup_path, cause=cause))

    public = gpg.export_public_key(key_id)
    if public.is_err():
        return fail(f"failed to export public key: {public.unwrap_err()}", public.unwrap_err())
    written = _write(backup_path / PUBLIC_KEY_FILE, public.unwrap(), "public key")
    if written.is_err():
        return Result.err(written.unwrap_err())

    trust = gpg.export_ownertrust()
    if trust.is_err():
        return fail(f"failed to export ownertrust: {trust.unwrap_err()}", trust.unwrap_err())
    written = _write(backup_path / TRUSTDB_FILE, trust.unwrap(), "trustdb")
    if written.is_err():
        return Result.err(written.unwrap_err())

    keys = gpg.list_secret_keys(key_id)
    if keys.is_err():
        return fail(f"failed to list secret keys: {keys.unwrap_err()}", keys.unwrap_err())
    listing = format_key_list(keys.unwrap()).encode()
    written = _write(backup_path / KEY_LIST_FILE, listing, "key list")
    if written.is_err():
        return Result.err(written.unwrap_err())

    logger.info("backup written to %s", backup_path)
    return Result.ok(
        BackupRecord(path=backup_path, created_at=created_at, files=tuple(EXPECTED_BACKUP_FILES))
    )


def verify_backup_complete(backup_path: Path) -> Result[list[str]]:
    """Return the backup files present, or an error naming the missing ones."""
    if not backup_path.is_dir():
        return Result.err(BackupError(f"backup directory not found: {backup_path}"))

    found = []
    missing = []
    for filename in EXPECTED_BACKUP_FILES:
        if (backup_path / filename).exists():
            found.append(filename)
        else:
            missing.append(filename)

    if missing:
        return Result.err(
            BackupError(
                f"backup incomplete, missing: {', '.join(missing)}", backup_path=backup_path
            )
        )
    return Result.ok(found)
