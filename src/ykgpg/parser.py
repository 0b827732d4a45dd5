"""Parsers for gpg's human-readable key listing and card status output.

gpg is invoked without ``--with-colons`` throughout, so these functions read
the same text an operator sees. They never raise on malformed input: a line
that only partly matches yields a record with the fields that could be
recovered and empty defaults for the rest.

Known output variants covered by tests/fixtures: plain keyring, offline
primary (``sec#``), card-resident subkeys (``ssb>`` plus ``card-no:``),
multi-capability keys, and keys without an expiry date.
"""

from __future__ import annotations

import dataclasses
import re

from .types import Capability, CardStatus, KeyKind, KeyRecord, KeySlot

# sec#  ed25519/0123456789ABCDEF 2024-01-01 [SC] [expires: 2029-01-01]
KEY_LINE_PATTERN = re.compile(
    r"^(?P<kind>sec|ssb)(?P<stub>[#>]?)\s+"
    r"(?P<algo>\S+)/(?P<keyid>\S+)\s+"
    r"(?P<created>\S+)\s+"
    r"\[(?P<caps>[^\]]+)\]"
    r"(?:\s+\[(?:expires|expired):\s+(?P<expires>[^\]]+)\])?"
)
KEY_LINE_PREFIXES = ("sec", "ssb")
CARD_NO_PREFIX = "card-no:"

SLOT_NAMES = {slot.value: slot for slot in KeySlot}
UNSET_VALUES = ("", "[none]")

_CAPABILITY_LETTERS = {c.value: c for c in Capability}

OPENPGP_NEGATIVE_WORDS = frozenset({"disabled", "unavailable"})
OPENPGP_POSITIVE_WORDS = frozenset({"enabled", "available"})


def parse_capabilities(text: str) -> tuple[Capability, ...]:
    """Decode a capability string such as ``"SC"`` into flags, keeping order.

    Letters gpg may add in future releases are dropped.
    """
    return tuple(_CAPABILITY_LETTERS[ch] for ch in text if ch in _CAPABILITY_LETTERS)


def parse_key_line(line: str) -> KeyRecord:
    match = KEY_LINE_PATTERN.match(line)
    if match:
        return KeyRecord(
            kind=KeyKind(match.group("kind")),
            short_id=match.group("keyid"),
            algorithm=match.group("algo"),
            created=match.group("created"),
            capabilities=parse_capabilities(match.group("caps")),
            expires_on=match.group("expires"),
            stub=bool(match.group("stub")),
            marker=match.group("kind") + match.group("stub"),
        )

    # Degraded line: keep whatever is recognisable
    tokens = line.split()
    marker = tokens[0] if tokens else line[:3]
    kind = KeyKind.PRIMARY if marker.startswith("sec") else KeyKind.SUBKEY
    algorithm = short_id = ""
    for token in tokens[1:]:
        if "/" in token:
            algorithm, _, short_id = token.partition("/")
            break
    return KeyRecord(
        kind=kind,
        short_id=short_id,
        algorithm=algorithm,
        stub=marker[3:4] in ("#", ">"),
        marker=marker,
    )


def parse_key_list(text: str) -> list[KeyRecord]:
    """Parse ``gpg --list-secret-keys --keyid-format=long`` output."""
    records: list[KeyRecord] = []

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        if line.startswith(KEY_LINE_PREFIXES):
            records.append(parse_key_line(line))
        elif line.startswith(CARD_NO_PREFIX) and records:
            parts = line.split()
            if len(parts) >= 2:
                records[-1] = dataclasses.replace(
                    records[-1], token_serial_ref=" ".join(parts[1:])
                )

    return records


def _value_after_colon(line: str) -> str:
    _, _, value = line.partition(":")
    return value.strip()


def _parse_slot_line(line: str) -> tuple[KeySlot, str] | None:
    label, sep, value = line.partition(":")
    if not sep:
        return None
    idx = label.find(" key")
    name = label[:idx].strip() if idx > 0 else label.strip()
    slot = SLOT_NAMES.get(name)
    value = value.strip()
    if slot is None or value in UNSET_VALUES:
        return None
    return slot, value


def parse_card_status(text: str) -> CardStatus:
    """Parse ``gpg --card-status`` output.

    Slot lines are recognised by a known slot name before ``key``, so padded
    labels like ``Encryption key....:`` work but unrelated lines that happen
    to contain "key" and a colon (``URL of public key``) are skipped.
    """
    serial = ""
    cardholder = ""
    slots: dict[KeySlot, str] = {}
    attributes: tuple[str, ...] = ()
    signature_counter: int | None = None
    pin_retries: tuple[int, int, int] | None = None

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        if line.startswith("Serial number"):
            fields = line.split()
            serial = fields[3] if len(fields) > 3 else _value_after_colon(line)
        elif line.startswith("Name of cardholder"):
            name = _value_after_colon(line)
            cardholder = "" if name == "[not set]" else name
        elif line.startswith("Key attributes"):
            attributes = tuple(_value_after_colon(line).split())
        elif line.startswith("Signature counter"):
            value = _value_after_colon(line)
            if value.isdigit():
                signature_counter = int(value)
        elif line.startswith("PIN retry counter"):
            counters = _value_after_colon(line).split()
            if len(counters) == 3 and all(c.isdigit() for c in counters):
                pin_retries = (int(counters[0]), int(counters[1]), int(counters[2]))
        elif "key" in line and ":" in line:
            slot = _parse_slot_line(line)
            if slot:
                slots[slot[0]] = slot[1]

    return CardStatus(
        serial=serial,
        cardholder_name=cardholder,
        key_slots=slots,
        key_attributes=attributes,
        signature_counter=signature_counter,
        pin_retries=pin_retries,
    )


def format_key_list(records: list[KeyRecord]) -> str:
    """Render records one per line for ``key-list.txt`` in a backup."""
    lines = []
    for record in records:
        caps = " ".join(c.value for c in record.capabilities)
        line = f"{record.marker or record.kind.value} {record.short_id} [{caps}]"
        if record.expires_on:
            line += f" expires: {record.expires_on}"
        if record.token_serial_ref:
            line += f" card-no: {record.token_serial_ref}"
        lines.append(line)
    return "".join(f"{line}\n" for line in lines)


def parse_openpgp_support(ykman_info: str) -> bool | None:
    """Read the OpenPGP application state from ``ykman info``.

    Returns None when the output does not say either way.
    """
    for raw in ykman_info.splitlines():
        line = raw.strip()
        if not line.startswith("OpenPGP"):
            continue
        lower = line.lower()
        words = set(re.findall(r"[a-z]+", lower))
        if "not available" in lower or words & OPENPGP_NEGATIVE_WORDS:
            return False
        if words & OPENPGP_POSITIVE_WORDS:
            return True
    return None
