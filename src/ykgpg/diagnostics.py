"""Post-setup verification: is the keyring, token and git configured for signing?

Each check prints one line of a checklist. Only a missing primary key or a
failed interactive signature count as failures; the other checks report
advisory states such as a token that is absent or waiting for a PIN.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import DetectionTimeoutError, VerificationError
from .lifecycle import primary_on_machine
from .types import CardStatus, KeyRecord, Result
from .workflows import OPENPGP_CARD_PREFIX, WorkflowContext


@dataclass
class SigningKey:
    key_id: str
    source: str  # "slot", "card-no" or "fallback"


@dataclass
class VerifyReport:
    failures: int = 0
    signing_key: SigningKey | None = None


def find_signing_subkey(records: list[KeyRecord], card: CardStatus) -> SigningKey | None:
    """Pick the subkey the token will sign with.

    The card's own signature slot wins; otherwise a signing subkey whose
    card-no matches this token's serial; otherwise the most recent signing
    subkey held on any token.
    """
    slot = card.signature_key
    if slot:
        return SigningKey(slot.replace(" ", ""), "slot")

    if card.serial:
        for record in records:
            ref = (record.token_serial_ref or "").replace(" ", "")
            if record.is_subkey and record.can_sign and ref == OPENPGP_CARD_PREFIX + card.serial:
                return SigningKey(record.short_id, "card-no")

    on_token = [r for r in records if r.is_subkey and r.can_sign and r.is_on_token]
    if on_token:
        return SigningKey(on_token[-1].short_id, "fallback")
    return None


def _git_config(ctx: WorkflowContext, key: str) -> str:
    # git exits 1 when the key is unset
    value = ctx.executor.run("git", ["config", "--global", key])
    return value.map(lambda out: out.decode(errors="replace").strip()).unwrap_or("")


def _check_token(ctx: WorkflowContext, records: list[KeyRecord], report: VerifyReport) -> None:
    label = "Checking YubiKey presence"
    timeout = ctx.detection_timeout
    present = ctx.yubikey.is_present(timeout=timeout)

    if present.is_err():
        error = present.unwrap_err()
        if isinstance(error, DetectionTimeoutError):
            ctx.prompts.check(label, "TIMEOUT (GPG may be waiting for input)", None)
            ctx.prompts.warning(
                "  YubiKey detection timed out. GPG may be waiting for user interaction."
            )
        else:
            ctx.prompts.check(label, "NOT READY", None)
            ctx.prompts.info(f"  {error}")
        return
    if not present.unwrap():
        ctx.prompts.check(label, "NOT PRESENT", None)
        return

    card_result = ctx.yubikey.get_card_info(timeout=timeout)
    if card_result.is_err():
        if isinstance(card_result.unwrap_err(), DetectionTimeoutError):
            ctx.prompts.check(label, "TIMEOUT (GPG may be waiting for input)", None)
            ctx.prompts.warning("  gpg --card-status timed out. This may indicate:")
            ctx.prompts.warning("  1. GPG is waiting for PIN entry")
            ctx.prompts.warning("  2. Multiple YubiKeys are attached and GPG wants a selection")
            ctx.prompts.warning("  3. The YubiKey needs to be touched")
            ctx.prompts.info("  Try running 'gpg --card-status' manually to see what's happening")
        else:
            ctx.prompts.check(label, "OK (unable to get card info)")
        return

    card = card_result.unwrap()
    ctx.prompts.check(label, f"OK (serial: {card.serial})")
    report.signing_key = find_signing_subkey(records, card)
    if report.signing_key is None:
        return
    if report.signing_key.source == "slot":
        ctx.prompts.text(f"  Signature key on YubiKey: {card.signature_key}")
    elif report.signing_key.source == "card-no":
        ctx.prompts.text(f"  Found signing subkey on YubiKey: {report.signing_key.key_id}")
    else:
        ctx.prompts.text(f"  Using signing subkey on card: {report.signing_key.key_id}")
        ctx.prompts.info(
            "  Note: using the most recent signing subkey on a card. "
            "If this is wrong, check 'gpg --card-status'."
        )


def _check_signing(ctx: WorkflowContext, report: VerifyReport) -> None:
    label = "Testing GPG signing"
    if report.signing_key is None:
        ctx.prompts.check(label, "SKIPPED (unable to identify signing subkey on YubiKey)", None)
        ctx.prompts.info("  Could not find the signing subkey on the current YubiKey.")
        ctx.prompts.info("  Try running 'gpg --card-status' to verify the key is on the card.")
        return

    key_id = report.signing_key.key_id
    manual = f"echo 'test' | gpg --default-key {key_id} --sign --armor"
    signed = ctx.gpg.sign_test_message(key_id, timeout=ctx.detection_timeout)
    if signed.is_ok():
        ctx.prompts.check(label, "OK")
        return

    ctx.prompts.check(label, "INTERACTIVE", None)
    ctx.prompts.info("  Automated test requires PIN entry.")
    if not ctx.prompts.confirm("Run interactive signing test? (You'll need to enter your PIN)"):
        ctx.prompts.info(f"  To test manually: {manual}")
        return

    interactive = ctx.gpg.sign_test_file(key_id)
    if interactive.is_ok():
        ctx.prompts.check("Testing signing interactively", "OK")
        return
    ctx.prompts.check("Testing signing interactively", "FAILED", False)
    report.failures += 1
    ctx.prompts.info(f"  Error: {interactive.unwrap_err()}")
    ctx.prompts.info(f"  This might be due to PIN entry issues. Try manually: {manual}")


def verify(ctx: WorkflowContext) -> Result[VerifyReport]:
    """Run the setup checklist; any failed check makes the result an error."""
    cfg = ctx.config
    report = VerifyReport()
    ctx.prompts.header("Verify GPG/YubiKey Setup")

    listing = ctx.gpg.list_secret_keys(cfg.primary_key_id)
    records = listing.unwrap_or([])
    if records:
        ctx.prompts.check("Checking primary key exists", "OK")
    else:
        ctx.prompts.check("Checking primary key exists", "FAILED", False)
        report.failures += 1

    if records and not primary_on_machine(records):
        ctx.prompts.check("Checking master key is offline", "OK (sec# = offline)")
    else:
        ctx.prompts.check(
            "Checking master key is offline", "WARNING (master key may be on machine)", None
        )

    _check_token(ctx, records, report)

    git_key = _git_config(ctx, "user.signingkey")
    expected = [cfg.primary_key_id, cfg.primary_key_fingerprint]
    if report.signing_key is not None:
        expected.append(report.signing_key.key_id)
    if git_key and any(e and e.upper() in git_key.upper() for e in expected):
        ctx.prompts.check("Checking Git signing key config", "OK")
    else:
        configured = git_key or "not set"
        ctx.prompts.check(
            "Checking Git signing key config", f"MISMATCH (configured: {configured})", None
        )

    if _git_config(ctx, "commit.gpgsign").lower() == "true":
        ctx.prompts.check("Checking Git commit signing enabled", "OK")
    else:
        ctx.prompts.check("Checking Git commit signing enabled", "NOT ENABLED", None)

    _check_signing(ctx, report)

    ctx.prompts.text()
    if report.failures:
        ctx.prompts.error(f"{report.failures} check(s) failed")
        return Result.err(VerificationError(report.failures))
    ctx.prompts.success("All checks passed!")
    return Result.ok(report)

