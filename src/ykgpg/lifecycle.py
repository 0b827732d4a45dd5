"""Moving the primary (master) key between the local keyring and offline storage.

Taking the key offline deletes its secret material from the keyring, so the
order of operations matters: the public key is exported before anything is
deleted, and deletion is the only step that cannot be undone.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .errors import MasterKeyError
from .gpg_ops import GPGOperations
from .types import KeyRecord, MasterKeyState, Result

logger = logging.getLogger(__name__)


def long_key_id(fingerprint: str) -> str:
    """The 16-hex-digit long key id is the tail of a v4 fingerprint."""
    compact = fingerprint.replace(" ", "")
    return compact[-16:] if len(compact) > 16 else compact


def primary_on_machine(records: list[KeyRecord]) -> bool:
    return any(r.is_primary and not r.stub for r in records)


class MasterKeyLifecycle:
    def __init__(self, gpg: GPGOperations) -> None:
        self._gpg = gpg

    def state(self, fingerprint: str) -> Result[MasterKeyState]:
        return self._gpg.list_secret_keys(long_key_id(fingerprint)).map(
            lambda records: MasterKeyState.ON_MACHINE
            if primary_on_machine(records)
            else MasterKeyState.OFFLINE
        )

    def take_offline(self, fingerprint: str) -> Result[bool]:
        """Remove the master key's secret material from the local keyring.

        Returns ok(True) when the key was removed and ok(False) when it was
        already offline, in which case nothing but the listing is run.
        """
        key_id = long_key_id(fingerprint)

        listing = self._gpg.list_secret_keys(key_id)
        if listing.is_err():
            return Result.err(
                MasterKeyError(
                    f"failed to list keys: {listing.unwrap_err()}", cause=listing.unwrap_err()
                )
            )
        if not primary_on_machine(listing.unwrap()):
            logger.info("master key %s already offline", key_id)
            return Result.ok(False)

        subkeys: bytes | None = None
        exported = self._gpg.export_secret_subkeys(key_id)
        if exported.is_ok():
            subkeys = exported.unwrap()
        else:
            logger.warning(
                "could not export secret subkeys (they may already be on a token): %s",
                exported.unwrap_err(),
            )

        public = self._gpg.export_public_key(key_id)
        if public.is_err():
            return Result.err(
                MasterKeyError(
                    f"failed to export public key: {public.unwrap_err()}",
                    cause=public.unwrap_err(),
                )
            )
        public_key = public.unwrap()

        deleted = self._gpg.delete_secret_key(fingerprint)
        if deleted.is_err():
            return Result.err(
                MasterKeyError(
                    f"failed to delete secret key: {deleted.unwrap_err()}",
                    cause=deleted.unwrap_err(),
                )
            )

        reimported = self._gpg.import_key(public_key)
        if reimported.is_err():
            return Result.err(
                MasterKeyError(
                    "secret key deleted but the public key could not be re-imported: "
                    f"{reimported.unwrap_err()}",
                    recovery_command="gpg --import <backup>/public-key.asc",
                    cause=reimported.unwrap_err(),
                )
            )

        if subkeys:
            restored = self._gpg.import_key(subkeys)
            if restored.is_err():
                logger.warning(
                    "could not re-import subkeys; stubs are recreated when the token "
                    "is next used: %s",
                    restored.unwrap_err(),
                )

        return Result.ok(True)

    def bring_online(self, master_key_path: Path) -> Result[None]:
        """Import the master key from offline storage."""
        if not master_key_path.exists():
            return Result.err(MasterKeyError(f"master key not found at {master_key_path}"))
        imported = self._gpg.import_key_file(master_key_path)
        if imported.is_err():
            return Result.err(
                MasterKeyError(
                    f"failed to import master key: {imported.unwrap_err()}",
                    recovery_command=f"gpg --import {master_key_path}",
                    cause=imported.unwrap_err(),
                )
            )
        return imported
