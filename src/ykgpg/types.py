from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class KeyKind(Enum):
    PRIMARY = "sec"
    SUBKEY = "ssb"


class Capability(Enum):
    SIGN = "S"
    ENCRYPT = "E"
    AUTHENTICATE = "A"
    CERTIFY = "C"


class KeySlot(Enum):
    SIGNATURE = "Signature"
    ENCRYPTION = "Encryption"
    AUTHENTICATION = "Authentication"


class MasterKeyState(Enum):
    ON_MACHINE = "on_machine"
    OFFLINE = "offline"


@dataclass(frozen=True)
class KeyRecord:
    """One entry of a secret-key listing.

    ``stub`` is set when the listing marker carries a ``#`` or ``>`` suffix,
    meaning the secret material is not held locally.
    """

    kind: KeyKind
    short_id: str = ""
    algorithm: str = ""
    created: str = ""
    fingerprint: str = ""
    capabilities: tuple[Capability, ...] = ()
    expires_on: str | None = None
    token_serial_ref: str | None = None
    stub: bool = False
    marker: str = ""

    @property
    def is_primary(self) -> bool:
        return self.kind == KeyKind.PRIMARY

    @property
    def is_subkey(self) -> bool:
        return self.kind == KeyKind.SUBKEY

    @property
    def is_on_token(self) -> bool:
        if self.token_serial_ref:
            return True
        return self.is_subkey and self.marker.endswith(">")

    @property
    def can_sign(self) -> bool:
        return Capability.SIGN in self.capabilities

    def capability_letters(self) -> str:
        return "".join(c.value for c in self.capabilities)


@dataclass(frozen=True)
class CardStatus:
    serial: str = ""
    cardholder_name: str = ""
    key_slots: dict[KeySlot, str] = field(default_factory=dict)
    key_attributes: tuple[str, ...] = ()
    signature_counter: int | None = None
    pin_retries: tuple[int, int, int] | None = None

    @property
    def signature_key(self) -> str | None:
        return self.key_slots.get(KeySlot.SIGNATURE)

    @property
    def has_signature_key(self) -> bool:
        return bool(self.signature_key)

    def slot_attribute(self, slot: KeySlot) -> str | None:
        """Algorithm descriptor for a slot, in signature/encryption/auth order."""
        order = [KeySlot.SIGNATURE, KeySlot.ENCRYPTION, KeySlot.AUTHENTICATION]
        idx = order.index(slot)
        if idx < len(self.key_attributes):
            return self.key_attributes[idx]
        return None


@dataclass(frozen=True)
class BackupRecord:
    path: Path
    created_at: datetime
    files: tuple[str, ...] = ()


class Result(Generic[T]):
    __slots__ = ("_value", "_error", "_is_ok")

    def __init__(self, value: T | None, error: Exception | None, is_ok: bool) -> None:
        self._value = value
        self._error = error
        self._is_ok = is_ok

    @staticmethod
    def ok(value: T) -> Result[T]:
        return Result(value, None, True)

    @staticmethod
    def err(error: Exception) -> Result[T]:
        return Result(None, error, False)

    def is_ok(self) -> bool:
        return self._is_ok

    def is_err(self) -> bool:
        return not self._is_ok

    def unwrap(self) -> T:
        if not self._is_ok:
            raise self._error if self._error else RuntimeError("Result is error but no error set")
        return self._value  # type: ignore

    def unwrap_err(self) -> Exception:
        if self._is_ok:
            raise RuntimeError("Called unwrap_err on Ok result")
        return self._error  # type: ignore

    def unwrap_or(self, default: T) -> T:
        return self._value if self._is_ok else default  # type: ignore

    def map(self, fn: Callable[[T], U]) -> Result[U]:
        if self._is_ok:
            try:
                return Result.ok(fn(self._value))  # type: ignore
            except Exception as e:
                return Result.err(e)
        return Result.err(self._error)  # type: ignore
