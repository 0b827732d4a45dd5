"""Guided key-management workflows.

Each workflow drives the key directory, token and master-key services for
one CLI command and talks to the operator through ``Prompts``. Workflows
return ``Result[None]``; an operator declining a confirmation is a normal
ok result, not an error.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path

from .backup import create_backup
from .config import Config, write_config
from .errors import (
    DetectionTimeoutError,
    ErrorCategory,
    HardwareError,
    TokenUnsupportedError,
    WorkflowError,
    YkgpgError,
)
from .executor import CommandExecutor
from .gpg_ops import GPGOperations
from .lifecycle import MasterKeyLifecycle, primary_on_machine
from .parser import format_key_list
from .prompts import Prompts
from .types import CardStatus, KeyRecord, KeySlot, Result
from .yubikey_ops import DETECTION_TIMEOUT, YubiKeyOperations

MANUAL_UPLOAD_URL = "https://keys.openpgp.org/upload"
VKS_URL = "https://keys.openpgp.org/vks/v1/by-fingerprint/"
DEFAULT_ADMIN_PIN = "12345678"
DEFAULT_USER_PIN = "123456"
SUBKEY_LIFETIME_YEARS = 5

# OpenPGP card application id prefix used in gpg's card-no field
OPENPGP_CARD_PREFIX = "0006"


@dataclass
class WorkflowContext:
    config: Config
    gpg: GPGOperations
    yubikey: YubiKeyOperations
    lifecycle: MasterKeyLifecycle
    prompts: Prompts
    executor: CommandExecutor
    detection_timeout: float = DETECTION_TIMEOUT

    @classmethod
    def create(
        cls,
        config: Config,
        prompts: Prompts,
        executor: CommandExecutor | None = None,
    ) -> WorkflowContext:
        executor = executor or CommandExecutor()
        gpg = GPGOperations(executor)
        return cls(
            config=config,
            gpg=gpg,
            yubikey=YubiKeyOperations(gpg, executor),
            lifecycle=MasterKeyLifecycle(gpg),
            prompts=prompts,
            executor=executor,
        )


# Guided interactive steps


class StepOutcome(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NOT_VERIFIED = "not_verified"


@dataclass(frozen=True)
class GuidedStep:
    """Instructions shown before handing the terminal to an interactive gpg session."""

    title: str
    steps: tuple[str, ...]
    warnings: tuple[str, ...] = ()
    prompt: str = "Press Enter when ready to continue (or 'q' to cancel)"
    # Session errors become warnings and the workflow carries on
    tolerate_session_error: bool = False


def run_guided_step(
    ctx: WorkflowContext,
    step: GuidedStep,
    session: Callable[[], Result[None]],
    verify: Callable[[], bool] | None = None,
) -> Result[StepOutcome]:
    """Show the step, wait for the operator, run the session, then re-check.

    The session's own exit status says little about what the operator did
    inside it, so ``verify`` inspects the resulting state instead.
    """
    ctx.prompts.instructions(step.title, step.steps)
    for warning in step.warnings:
        ctx.prompts.warning(warning)

    if not ctx.prompts.wait_for_enter(step.prompt):
        ctx.prompts.info("Step cancelled")
        return Result.ok(StepOutcome.CANCELLED)

    result = session()
    if result.is_err():
        if not step.tolerate_session_error:
            return Result.err(result.unwrap_err())
        ctx.prompts.warning(f"Card edit session ended: {result.unwrap_err()}")

    if verify is not None and not verify():
        return Result.ok(StepOutcome.NOT_VERIFIED)
    return Result.ok(StepOutcome.COMPLETED)


# Shared helpers


def same_key_id(candidate: str, key_id: str) -> bool:
    """Compare key ids ignoring case, spaces and a 0x prefix.

    A long id matches the fingerprint it is the tail of.
    """

    def norm(value: str) -> str:
        value = value.replace(" ", "").upper()
        return value[2:] if value.startswith("0X") else value

    a, b = norm(candidate), norm(key_id)
    if not a or not b:
        return False
    if a == b:
        return True
    shorter, longer = sorted((a, b), key=len)
    return len(shorter) >= 16 and longer.endswith(shorter)


def master_present(records: list[KeyRecord], key_id: str) -> bool:
    return any(r.is_primary and not r.stub and same_key_id(r.short_id, key_id) for r in records)


def subkey_expiry(today: date | None = None) -> str:
    today = today or date.today()
    try:
        expires = today.replace(year=today.year + SUBKEY_LIFETIME_YEARS)
    except ValueError:
        # Feb 29 with no leap day in the target year
        expires = today.replace(year=today.year + SUBKEY_LIFETIME_YEARS, day=28)
    return expires.isoformat()


def _show_presence_guidance(prompts: Prompts, error: Exception) -> None:
    if isinstance(error, TokenUnsupportedError):
        prompts.warning("This YubiKey model may not support OpenPGP functionality.")
        prompts.info("To check your YubiKey capabilities:")
        prompts.text("  - Install ykman: see https://github.com/Yubico/yubikey-manager")
        prompts.text("  - Run: ykman info")
        prompts.info("Supported YubiKey models for OpenPGP:")
        prompts.text("  - YubiKey 4 series and later")
        prompts.text("  - YubiKey 5 series")
        prompts.text("  - Some YubiKey NEO models")
    elif isinstance(error, DetectionTimeoutError):
        prompts.info("Try running 'gpg --card-status' manually to see what it is waiting for.")
    else:
        prompts.instructions(
            "To initialize a blank YubiKey for OpenPGP:",
            [
                "Run: gpg --card-edit",
                "Type: admin",
                "Type: factory-reset (WARNING: This will erase all data!)",
                "Type: yes to confirm",
                "Type: quit",
            ],
        )
        prompts.info("Alternatively, if you have ykman installed:")
        prompts.text("  ykman openpgp reset")


def require_token(ctx: WorkflowContext, guidance: bool = True) -> Result[CardStatus]:
    """Ensure a usable token is attached and return its card status."""
    present = ctx.yubikey.is_present(timeout=ctx.detection_timeout)
    if present.is_err():
        error = present.unwrap_err()
        ctx.prompts.error(str(error))
        if guidance:
            _show_presence_guidance(ctx.prompts, error)
        return Result.err(error)

    if not present.unwrap():
        ctx.prompts.error("No YubiKey detected. Please insert a YubiKey and try again.")
        return Result.err(HardwareError("no YubiKey detected"))

    card = ctx.yubikey.get_card_info()
    if card.is_err():
        return Result.err(
            HardwareError(f"failed to get card info: {card.unwrap_err()}", cause=card.unwrap_err())
        )
    return card


def _backup(ctx: WorkflowContext) -> Result[None]:
    ctx.prompts.info("Creating backup before making changes...")
    backup = create_backup(ctx.gpg, ctx.config.primary_key_id, ctx.config.backup_path)
    if backup.is_err():
        return Result.err(backup.unwrap_err())
    ctx.prompts.success(f"Backup created at {backup.unwrap().path}")
    return Result.ok(None)


def _master_key_path(ctx: WorkflowContext, explain: bool) -> Path:
    configured = ctx.config.master_key_file
    if configured is not None:
        return configured
    if explain:
        ctx.prompts.text()
        ctx.prompts.text("Please enter the path to your master secret key backup.")
        ctx.prompts.text("This is typically on a USB drive, e.g.:")
        ctx.prompts.text("  /media/USB_DRIVE/Your Name (YOUR_KEY_ID) - Secret.asc")
        ctx.prompts.text()
    return Path(ctx.prompts.ask_required("Master key path")).expanduser()


def import_master(ctx: WorkflowContext, explain: bool = False) -> Result[None]:
    path = _master_key_path(ctx, explain)
    ctx.prompts.info("Importing master key...")
    imported = ctx.lifecycle.bring_online(path)
    if imported.is_err():
        return imported
    ctx.prompts.success("Master key imported")
    return Result.ok(None)


def remove_master(ctx: WorkflowContext) -> bool:
    """Take the master key offline, reporting the outcome. True when it is offline."""
    removed = ctx.lifecycle.take_offline(ctx.config.primary_key_fingerprint)
    if removed.is_err():
        ctx.prompts.warning("Failed to remove master key")
        ctx.prompts.show_error(removed.unwrap_err())
        return False
    if removed.unwrap():
        ctx.prompts.success("Master key removed from local keyring")
    else:
        ctx.prompts.info("Master key is already offline")
    return True


def offer_master_removal(ctx: WorkflowContext) -> None:
    ctx.prompts.text()
    if ctx.prompts.confirm("Remove master key from local machine?"):
        remove_master(ctx)
    else:
        ctx.prompts.warning("Master key left on machine. Remember to remove it manually!")


def offer_keyserver_upload(ctx: WorkflowContext) -> bool:
    """Ask to publish the public key. Upload failures are warnings, never errors."""
    keyserver = ctx.config.keyserver
    if not ctx.prompts.confirm(f"Upload updated public key to {keyserver}?"):
        return False

    ctx.prompts.info("Uploading to keyserver...")
    sent = ctx.gpg.send_keys(keyserver, ctx.config.primary_key_id)
    if sent.is_err():
        ctx.prompts.warning(f"Failed to upload to keyserver: {sent.unwrap_err()}")
        ctx.prompts.warning(f"Visit {MANUAL_UPLOAD_URL} to upload manually.")
        return False
    ctx.prompts.success(f"Public key uploaded to {keyserver}")
    return True


def _signature_slot_filled(ctx: WorkflowContext) -> bool:
    return ctx.yubikey.get_card_info().map(lambda c: c.has_signature_key).unwrap_or(False)


def _show_move_troubleshooting(prompts: Prompts) -> None:
    prompts.warning("Key may not have been moved successfully. Signature key slot is still empty.")
    prompts.warning("This can happen if:")
    prompts.warning("  1. The Admin PIN was incorrect (GPG doesn't show an error for this!)")
    prompts.warning("  2. The card's key attributes don't match your key type (RSA vs ECC)")
    prompts.warning("  3. The keytocard operation was cancelled")
    prompts.instructions(
        "To fix Admin PIN issues:",
        [
            f"Default Admin PIN is: {DEFAULT_ADMIN_PIN}",
            "YubiKey Authenticator app uses DIFFERENT PINs than OpenPGP!",
            "To change OpenPGP PINs: gpg --card-edit, then admin, then passwd",
        ],
    )
    prompts.instructions(
        "To retry:",
        [
            "Run 'gpg --card-status' to check the PIN retry counter",
            "If PIN retries are 0, reset the PIN via gpg --card-edit, admin, passwd",
            "Run 'ykgpg move-subkey' again with the correct Admin PIN",
        ],
    )


def _keytocard_step(key_id: str, which: str) -> GuidedStep:
    return GuidedStep(
        title="Steps to move the subkey to YubiKey:",
        steps=(
            f"Run: gpg --edit-key {key_id}",
            "Type: list (to see all subkeys with numbers)",
            f"Identify the {which} signing subkey (the one without a card-no)",
            "Type: key N (where N is the number of that subkey)",
            "Type: keytocard",
            "Select: (1) Signature key",
            "Enter your GPG key PASSPHRASE when prompted",
            f"Enter your YubiKey ADMIN PIN when prompted (default: {DEFAULT_ADMIN_PIN})",
            "Type: save",
        ),
        warnings=(
            "GPG won't show an error if the Admin PIN is wrong!",
            "If 'save' says 'Key not changed', the Admin PIN was likely incorrect.",
        ),
    )


def _move_to_card(ctx: WorkflowContext, which: str) -> Result[StepOutcome]:
    key_id = ctx.config.primary_key_id
    outcome = run_guided_step(
        ctx,
        _keytocard_step(key_id, which),
        lambda: ctx.gpg.edit_key(key_id),
        verify=lambda: _signature_slot_filled(ctx),
    )
    if outcome.is_ok():
        if outcome.unwrap() == StepOutcome.COMPLETED:
            ctx.prompts.success("Key moved to YubiKey, signature slot is populated")
        elif outcome.unwrap() == StepOutcome.NOT_VERIFIED:
            _show_move_troubleshooting(ctx.prompts)
    return outcome


def _backup_reminder(ctx: WorkflowContext) -> bool:
    ctx.prompts.text()
    ctx.prompts.warning("IMPORTANT: 'keytocard' MOVES the key, it doesn't copy it!")
    ctx.prompts.warning("After moving, the local copy is deleted. Without a backup the key")
    ctx.prompts.warning("is PERMANENTLY LOST if the YubiKey is factory reset or lost.")
    ctx.prompts.info("Create an updated backup now:")
    ctx.prompts.text(
        f"  gpg --export-secret-keys {ctx.config.primary_key_id} "
        "> master-key-backup-$(date +%Y%m%d).gpg"
    )
    return ctx.prompts.confirm("Have you backed up your keys and are ready to proceed?")


def _next_steps(prompts: Prompts, serial: str) -> None:
    prompts.instructions(
        "Next steps:",
        [
            f"Label this YubiKey physically (e.g., 'Key B - {serial}')",
            "Test signing: echo 'test' | gpg --sign --armor",
            "Register this YubiKey with GitHub/GitLab if not already done",
        ],
    )


def _show_expirations(prompts: Prompts, records: list[KeyRecord]) -> None:
    for record in records:
        line = f"  {record.marker or record.kind.value} {record.short_id}"
        if record.expires_on:
            line += f" expires: {record.expires_on}"
        prompts.text(line)


# Workflows


def status(ctx: WorkflowContext) -> Result[None]:
    cfg = ctx.config
    ctx.prompts.header("YubiKey GPG Manager Status")

    ctx.prompts.section("PRIMARY KEY")
    ctx.prompts.key_value_key("Key ID", cfg.primary_key_id)
    ctx.prompts.key_value("User", f"{cfg.user_name} <{cfg.user_email}>")

    listing = ctx.gpg.list_secret_keys(cfg.primary_key_id)
    if listing.is_err():
        ctx.prompts.error(f"Primary key not found in keyring: {listing.unwrap_err()}")
        return Result.err(listing.unwrap_err())
    records = listing.unwrap()
    if not records:
        ctx.prompts.error("Primary key not found in keyring!")
        return Result.err(WorkflowError("primary key not found"))

    ctx.prompts.section("KEY DETAILS")
    for line in format_key_list(records).splitlines():
        ctx.prompts.text(line)
    state = "ON THIS MACHINE" if primary_on_machine(records) else "offline"
    ctx.prompts.key_value("Master key", state)

    ctx.prompts.section("YUBIKEY STATUS")
    present = ctx.yubikey.is_present(timeout=ctx.detection_timeout)
    if present.is_err():
        ctx.prompts.warning(f"Failed to check YubiKey: {present.unwrap_err()}")
    elif present.unwrap():
        card = ctx.yubikey.get_card_info(timeout=ctx.detection_timeout)
        if card.is_err():
            ctx.prompts.warning(f"Failed to get card info: {card.unwrap_err()}")
        else:
            info = card.unwrap()
            ctx.prompts.success("YubiKey detected!")
            ctx.prompts.key_value("Serial", info.serial)
            ctx.prompts.key_value("Cardholder", info.cardholder_name or "[not set]")
            ctx.prompts.text()
            ctx.prompts.text("Keys on this YubiKey:")
            for slot, key in info.key_slots.items():
                ctx.prompts.key_value_key(f"  {slot.value}", key)
    else:
        ctx.prompts.warning("No YubiKey detected")
    return Result.ok(None)


def _show_card(prompts: Prompts, title: str, card: CardStatus) -> None:
    prompts.section(title)
    prompts.key_value("Serial", card.serial)
    prompts.key_value("Cardholder", card.cardholder_name or "[not set]")
    if card.key_attributes:
        prompts.key_value("Key types", " ".join(card.key_attributes))
    if card.pin_retries is not None:
        prompts.key_value("PIN retries", " ".join(str(n) for n in card.pin_retries))


def init_card(ctx: WorkflowContext) -> Result[None]:
    ctx.prompts.header("Initialize YubiKey for OpenPGP")

    card_result = require_token(ctx, guidance=False)
    if card_result.is_err():
        return Result.err(card_result.unwrap_err())
    card = card_result.unwrap()
    ctx.prompts.info(f"Detected YubiKey with serial: {card.serial}")

    _show_card(ctx.prompts, "CURRENT CARD STATUS", card)
    for slot, key in card.key_slots.items():
        ctx.prompts.key_value(slot.value, key)
    if card.key_slots:
        ctx.prompts.warning("This YubiKey already has keys configured.")
        ctx.prompts.warning("Changing key attributes will NOT affect existing keys on the card.")
        ctx.prompts.warning(
            "To start fresh, factory reset the card first: gpg --card-edit, admin, factory-reset"
        )

    ctx.prompts.section("PIN INFORMATION")
    ctx.prompts.table(
        ["PIN Type", "Default", "Min Length", "Used For"],
        [
            ["User PIN", DEFAULT_USER_PIN, "6 chars", "Signing, decrypting, auth"],
            ["Admin PIN", DEFAULT_ADMIN_PIN, "8 chars", "Card management, moving keys"],
        ],
        title="YubiKey OpenPGP uses TWO separate PINs",
    )
    ctx.prompts.warning("IMPORTANT: These are NOT the same PINs as YubiKey Authenticator or FIDO2!")
    ctx.prompts.warning("OpenPGP PINs are managed separately via GPG.")

    card_steps = [
        (
            "Change default PINs? (Highly recommended for new cards)",
            GuidedStep(
                title="Steps to change PINs:",
                steps=(
                    "Type: admin",
                    "Type: passwd",
                    f"Select (1) to change User PIN (current default: {DEFAULT_USER_PIN})",
                    f"Select (3) to change Admin PIN (current default: {DEFAULT_ADMIN_PIN})",
                    "Optionally select (4) to set a Reset Code (for PIN recovery)",
                    "Press Q to exit the passwd menu, then type: quit",
                ),
                warnings=("PIN prompts ask for the CURRENT pin first, then the NEW pin!",),
                tolerate_session_error=True,
            ),
        ),
        (
            "Change key algorithm to ed25519/cv25519? (Recommended for new keys)",
            GuidedStep(
                title="Steps to configure for ed25519:",
                steps=(
                    "Type: admin",
                    "Type: key-attr",
                    "For the Signature key select (2) ECC, then (1) Curve 25519",
                    "For the Encryption key select (2) ECC, then (1) Curve 25519",
                    "For the Authentication key select (2) ECC, then (1) Curve 25519",
                    "Enter Admin PIN when prompted",
                    "Type: quit",
                ),
                warnings=(f"You'll be prompted for the Admin PIN (default: {DEFAULT_ADMIN_PIN})",),
                tolerate_session_error=True,
            ),
        ),
        (
            "Set cardholder name on the card? (Helps identify which key is which)",
            GuidedStep(
                title="Steps to set cardholder name:",
                steps=(
                    "Type: admin",
                    "Type: name (enter surname, then given name)",
                    "Type: lang (enter 'en' for English)",
                    "Type: quit",
                ),
                tolerate_session_error=True,
            ),
        ),
    ]

    ctx.prompts.section("KEY ALGORITHM CONFIGURATION")
    ctx.prompts.text("Your YubiKey can store RSA or ECC (elliptic curve) keys.")
    ctx.prompts.text("Configure the card's key type BEFORE moving keys to it.")
    if card.key_attributes:
        ctx.prompts.key_value("Current configuration", " ".join(card.key_attributes))

    for question, step in card_steps:
        ctx.prompts.text()
        if not ctx.prompts.confirm(question):
            continue
        outcome = run_guided_step(ctx, step, ctx.yubikey.edit_card)
        if outcome.is_err():
            return Result.err(outcome.unwrap_err())

    ctx.prompts.info("Checking final card status...")
    final = ctx.yubikey.get_card_info()
    if final.is_ok():
        _show_card(ctx.prompts, "FINAL CARD STATUS", final.unwrap())

    ctx.prompts.success("YubiKey initialization complete!")
    ctx.prompts.instructions(
        "Next steps:",
        [
            "Run 'ykgpg setup' to create a new signing subkey and move it to this YubiKey",
            "Or run 'ykgpg move-subkey' if you already have a subkey to move",
            f"Label this YubiKey physically with its serial number: {card.serial}",
        ],
    )
    return Result.ok(None)


def setup(ctx: WorkflowContext) -> Result[None]:
    cfg = ctx.config
    ctx.prompts.header("Setup New YubiKey for Signing")

    card_result = require_token(ctx)
    if card_result.is_err():
        return Result.err(card_result.unwrap_err())
    card = card_result.unwrap()
    ctx.prompts.info(f"Detected YubiKey with serial: {card.serial}")

    if card.has_signature_key:
        ctx.prompts.warning(
            f"This YubiKey already has a signature key configured: {card.signature_key}"
        )
        if not ctx.prompts.confirm("Continue anyway? This will add another signing subkey."):
            return Result.ok(None)

    backed_up = _backup(ctx)
    if backed_up.is_err():
        return backed_up

    imported = import_master(ctx, explain=True)
    if imported.is_err():
        return imported

    listing = ctx.gpg.list_secret_keys(cfg.primary_key_id)
    if listing.is_err():
        return Result.err(listing.unwrap_err())
    if not master_present(listing.unwrap(), cfg.primary_key_id):
        return Result.err(
            WorkflowError("master key still shows as unavailable. Import may have failed")
        )

    ctx.prompts.info("Generating new signing subkey...")
    addkey = GuidedStep(
        title="Now we need to generate a new signing subkey. Follow these steps:",
        steps=(
            f"Run: gpg --edit-key {cfg.primary_key_id}",
            "At the gpg> prompt, type: addkey",
            "Select: (10) ECC (sign only)",
            "Select: (1) Curve 25519",
            f"For expiration, enter: {SUBKEY_LIFETIME_YEARS}y",
            "Confirm the creation",
            "Type: save",
        ),
        prompt="Press Enter when ready to run gpg --edit-key, or 'q' to quit",
    )
    outcome = run_guided_step(ctx, addkey, lambda: ctx.gpg.edit_key(cfg.primary_key_id))
    if outcome.is_err():
        return Result.err(outcome.unwrap_err())
    if outcome.unwrap() == StepOutcome.CANCELLED:
        removed = ctx.lifecycle.take_offline(cfg.primary_key_fingerprint)
        if removed.is_err():
            return Result.err(removed.unwrap_err())
        return Result.ok(None)

    if not _backup_reminder(ctx):
        ctx.prompts.info("Backup first, then run 'ykgpg move-subkey' to continue.")
        ctx.prompts.warning("Master key left on machine. Remember to remove it manually!")
        return Result.ok(None)

    moved = _move_to_card(ctx, "NEW")
    if moved.is_err():
        return Result.err(moved.unwrap_err())
    if moved.unwrap() == StepOutcome.CANCELLED:
        ctx.prompts.info("Run 'ykgpg move-subkey' to move the new subkey later.")

    offer_master_removal(ctx)
    offer_keyserver_upload(ctx)

    ctx.prompts.success("YubiKey setup complete!")
    ctx.prompts.info(f"Serial: {card.serial}")
    _next_steps(ctx.prompts, card.serial)
    return Result.ok(None)


def setup_batch(ctx: WorkflowContext, today: date | None = None) -> Result[None]:
    cfg = ctx.config
    ctx.prompts.header("Setup New YubiKey (Automated Mode)")

    card_result = require_token(ctx)
    if card_result.is_err():
        return Result.err(card_result.unwrap_err())
    card = card_result.unwrap()
    ctx.prompts.info(f"Detected YubiKey with serial: {card.serial}")

    backed_up = _backup(ctx)
    if backed_up.is_err():
        return backed_up

    imported = import_master(ctx)
    if imported.is_err():
        return imported

    expiry = subkey_expiry(today)
    ctx.prompts.info(f"Generating new ed25519 signing subkey (expires {expiry})...")
    ctx.prompts.info("Enter your key passphrase when gpg asks for it.")
    created = ctx.gpg.quick_add_signing_subkey(cfg.primary_key_fingerprint, expiry)
    if created.is_err():
        return Result.err(
            WorkflowError(
                f"failed to create subkey: {created.unwrap_err()}", cause=created.unwrap_err()
            )
        )
    ctx.prompts.success("New signing subkey created")

    ctx.prompts.info("The new subkey has been created. GPG requires interaction to move it.")
    moved = _move_to_card(ctx, "NEWEST")
    if moved.is_err():
        return Result.err(moved.unwrap_err())

    offer_master_removal(ctx)
    offer_keyserver_upload(ctx)

    ctx.prompts.success(f"Setup complete for YubiKey {card.serial}")
    return Result.ok(None)


def move_subkey(ctx: WorkflowContext) -> Result[None]:
    cfg = ctx.config
    ctx.prompts.header("Move Subkey to YubiKey")

    card_result = require_token(ctx)
    if card_result.is_err():
        return Result.err(card_result.unwrap_err())
    card = card_result.unwrap()
    ctx.prompts.info(f"Detected YubiKey with serial: {card.serial}")

    ctx.prompts.instructions(
        "PIN Information:",
        [
            f"Default User PIN: {DEFAULT_USER_PIN}",
            f"Default Admin PIN: {DEFAULT_ADMIN_PIN}",
            "If you set PINs in the YubiKey Manager app, use those instead",
            "YubiKey Authenticator manages DIFFERENT PINs than OpenPGP!",
        ],
    )

    signature_attr = card.slot_attribute(KeySlot.SIGNATURE)
    if signature_attr:
        ctx.prompts.key_value("Signature slot configured for", signature_attr)
        if signature_attr.lower().startswith("rsa"):
            ctx.prompts.warning(
                "Your YubiKey is configured for RSA keys, but your signing subkey may be ECC."
            )
            ctx.prompts.warning("Change the card's key attributes before moving an ECC key.")
            ctx.prompts.instructions(
                "To configure the card for ed25519:",
                [
                    "Run: gpg --card-edit",
                    "Type: admin",
                    "Type: key-attr",
                    "For the Signature key select (2) ECC, then (1) Curve 25519",
                    f"Enter Admin PIN when prompted (default: {DEFAULT_ADMIN_PIN})",
                    "Repeat for Encryption and Authentication if needed",
                    "Type: quit",
                ],
            )
            if not ctx.prompts.confirm(
                "Continue anyway? (keytocard will fail if key types don't match)"
            ):
                return Result.ok(None)

    if card.has_signature_key:
        ctx.prompts.warning(
            f"This YubiKey already has a signature key configured: {card.signature_key}"
        )
        if not ctx.prompts.confirm(
            "Continue anyway? This will replace the existing signature key."
        ):
            return Result.ok(None)

    listing = ctx.gpg.list_secret_keys(cfg.primary_key_id)
    if listing.is_err():
        return Result.err(listing.unwrap_err())
    if not master_present(listing.unwrap(), cfg.primary_key_id):
        ctx.prompts.warning("Master key not found in keyring. You may need to import it first.")
        ctx.prompts.text("  gpg --import <path-to-master-key-backup>")
        if not ctx.prompts.confirm(
            "Continue anyway? (The subkey move may fail if master key is not available)"
        ):
            return Result.ok(None)

    if not _backup_reminder(ctx):
        return Result.ok(None)

    moved = _move_to_card(ctx, "")
    if moved.is_err():
        return Result.err(moved.unwrap_err())
    if moved.unwrap() == StepOutcome.CANCELLED:
        return Result.ok(None)

    offer_master_removal(ctx)
    offer_keyserver_upload(ctx)

    ctx.prompts.success("Subkey move complete!")
    ctx.prompts.info(f"Serial: {card.serial}")
    _next_steps(ctx.prompts, card.serial)
    return Result.ok(None)


def _finish_master_session(ctx: WorkflowContext, outcome: Result[StepOutcome]) -> Result[bool]:
    """Put the master key away after an edit-key session; ok(False) if it was cancelled."""
    remove_master(ctx)
    if outcome.is_err():
        return Result.err(outcome.unwrap_err())
    return Result.ok(outcome.unwrap() != StepOutcome.CANCELLED)


def revoke(ctx: WorkflowContext) -> Result[None]:
    cfg = ctx.config
    ctx.prompts.header("Revoke Subkey (Lost/Compromised)")
    ctx.prompts.warning(
        "This will revoke a signing subkey, typically because a YubiKey was lost or compromised."
    )
    ctx.prompts.warning("This action CANNOT be undone!")

    listing = ctx.gpg.list_secret_keys(cfg.primary_key_id)
    if listing.is_err():
        return Result.err(listing.unwrap_err())
    records = listing.unwrap()

    ctx.prompts.text("Current signing subkeys:")
    for record in records:
        if record.can_sign:
            line = f"  {record.marker or record.kind.value} {record.short_id}"
            if record.token_serial_ref:
                line += f" card-no: {record.token_serial_ref}"
            ctx.prompts.text(line)
    ctx.prompts.text()
    ctx.prompts.text("Identify the subkey to revoke by its key ID (the hex string after the /).")
    ctx.prompts.text("If the YubiKey is lost, you can identify it by the card serial number.")

    key_to_revoke = ctx.prompts.ask("Enter the KEY ID to revoke (or 'q' to quit)")
    if key_to_revoke.lower() in ("", "q"):
        return Result.ok(None)

    if not any(
        same_key_id(r.short_id, key_to_revoke) or same_key_id(r.fingerprint, key_to_revoke)
        for r in records
    ):
        return Result.err(WorkflowError(f"key ID not found: {key_to_revoke}"))

    if not ctx.prompts.confirm(
        f"Are you SURE you want to revoke key {key_to_revoke}? This cannot be undone!",
        dangerous=True,
    ):
        return Result.ok(None)

    backed_up = _backup(ctx)
    if backed_up.is_err():
        return backed_up
    imported = import_master(ctx)
    if imported.is_err():
        return imported

    step = GuidedStep(
        title="To revoke the subkey:",
        steps=(
            "In the gpg prompt, type: list",
            f"Find the subkey matching: {key_to_revoke}",
            "Type: key N (where N is that subkey's number)",
            "Type: revkey",
            "Select reason: (1) Key has been compromised -OR- (2) Key is superseded",
            "Enter a description if desired",
            "Confirm the revocation",
            "Type: save",
        ),
    )
    finished = _finish_master_session(
        ctx, run_guided_step(ctx, step, lambda: ctx.gpg.edit_key(cfg.primary_key_id))
    )
    if finished.is_err() or not finished.unwrap():
        return finished.map(lambda _: None)

    ctx.prompts.warning("IMPORTANT: You must upload the updated key to propagate the revocation!")
    uploaded = offer_keyserver_upload(ctx)

    if uploaded:
        ctx.prompts.success("Subkey revoked. The revocation has been published.")
    else:
        ctx.prompts.success("Subkey revoked. Upload the public key to publish the revocation.")
    ctx.prompts.instructions(
        "Additional steps:",
        [
            "Remove the revoked key from GitHub/GitLab if it was registered there",
            "Update any systems that had the old key configured",
        ],
    )
    return Result.ok(None)


def extend(ctx: WorkflowContext) -> Result[None]:
    cfg = ctx.config
    ctx.prompts.header("Extend Key Expiration")

    listing = ctx.gpg.list_secret_keys(cfg.primary_key_id)
    if listing.is_err():
        return Result.err(listing.unwrap_err())
    ctx.prompts.text("Current key expiration status:")
    _show_expirations(ctx.prompts, listing.unwrap())
    ctx.prompts.text()

    new_expiry = ctx.prompts.ask(
        "Enter new expiration (e.g., '5y' for 5 years, '2035-01-01' for specific date)"
    )
    if not new_expiry:
        return Result.err(WorkflowError("no expiration provided"))

    backed_up = _backup(ctx)
    if backed_up.is_err():
        return backed_up
    imported = import_master(ctx)
    if imported.is_err():
        return imported

    step = GuidedStep(
        title="To extend expiration:",
        steps=(
            f"Extend the PRIMARY key first. Type: expire, then enter: {new_expiry}",
            f"For EACH subkey type: key N, then expire, then enter: {new_expiry}",
            "Type: key N again to deselect before moving to the next subkey",
            "Type: save",
        ),
    )
    finished = _finish_master_session(
        ctx, run_guided_step(ctx, step, lambda: ctx.gpg.edit_key(cfg.primary_key_id))
    )
    if finished.is_err() or not finished.unwrap():
        return finished.map(lambda _: None)

    offer_keyserver_upload(ctx)
    ctx.prompts.success("Key expiration extended")

    updated = ctx.gpg.list_secret_keys(cfg.primary_key_id)
    if updated.is_ok():
        ctx.prompts.text()
        ctx.prompts.text("Updated expiration status:")
        _show_expirations(ctx.prompts, updated.unwrap())
    return Result.ok(None)


def cleanup(ctx: WorkflowContext) -> Result[None]:
    cfg = ctx.config
    ctx.prompts.header("Cleanup Old Keys")

    listing = ctx.gpg.list_secret_keys_text()
    if listing.is_err():
        return Result.err(listing.unwrap_err())
    ctx.prompts.text("Current keys in keyring:")
    ctx.prompts.text()
    ctx.prompts.text(listing.unwrap())

    ctx.prompts.text(f"Keys other than your primary ({cfg.primary_key_id}) can be removed.")
    ctx.prompts.text("To delete a key manually:")
    ctx.prompts.text("  gpg --delete-secret-keys <KEY_ID>")
    ctx.prompts.text("  gpg --delete-keys <KEY_ID>")
    ctx.prompts.text()

    if ctx.prompts.confirm("Would you like to interactively delete keys?"):
        while True:
            key_id = ctx.prompts.ask("Enter KEY ID to delete (or 'q' to quit)")
            if key_id.lower() in ("", "q"):
                break
            if same_key_id(key_id, cfg.primary_key_id) or same_key_id(
                key_id, cfg.primary_key_fingerprint
            ):
                ctx.prompts.error("Cannot delete primary key!")
                continue
            if not ctx.prompts.confirm(f"Delete {key_id}?", dangerous=True):
                continue

            secret = ctx.gpg.delete_secret_key(key_id)
            if secret.is_err():
                ctx.prompts.warning(f"Failed to delete secret key: {secret.unwrap_err()}")
            public = ctx.gpg.delete_public_key(key_id)
            if public.is_err():
                ctx.prompts.warning(f"Failed to delete public key: {public.unwrap_err()}")
            else:
                ctx.prompts.success(f"Deleted {key_id}")

    if ctx.prompts.confirm("Clean up trust database?"):
        checked = ctx.gpg.check_trustdb()
        if checked.is_err():
            ctx.prompts.warning(f"Failed to check trustdb: {checked.unwrap_err()}")
        else:
            ctx.prompts.success("Trust database cleaned")
    return Result.ok(None)


def set_metadata(ctx: WorkflowContext) -> Result[None]:
    ctx.prompts.header("Set YubiKey Card Metadata")

    card_result = require_token(ctx, guidance=False)
    if card_result.is_err():
        return Result.err(card_result.unwrap_err())
    ctx.prompts.info(f"Configuring YubiKey with serial: {card_result.unwrap().serial}")

    ctx.prompts.text("This sets the cardholder name and other metadata on your YubiKey,")
    ctx.prompts.text("which helps identify which YubiKey is which.")
    step = GuidedStep(
        title="In the gpg prompt:",
        steps=(
            "Type: admin",
            "Type: name (then enter surname, then given name)",
            "Type: lang (then enter 'en')",
            f"Type: url (then enter: {VKS_URL}{ctx.config.primary_key_fingerprint})",
            "Type: quit",
        ),
    )
    outcome = run_guided_step(ctx, step, ctx.yubikey.edit_card)
    if outcome.is_err():
        return Result.err(outcome.unwrap_err())
    if outcome.unwrap() == StepOutcome.COMPLETED:
        ctx.prompts.success("YubiKey metadata updated")
    return Result.ok(None)


def default_export_path(today: date | None = None) -> Path:
    stamp = (today or date.today()).strftime("%Y%m%d")
    return Path.home() / f"public-key-{stamp}.asc"


def export_public_key(
    ctx: WorkflowContext,
    output: Path | None = None,
    today: date | None = None,
) -> Result[None]:
    ctx.prompts.header("Export Public Key")
    target = output.expanduser() if output else default_export_path(today)

    exported = ctx.gpg.export_public_key(ctx.config.primary_key_id)
    if exported.is_err():
        return Result.err(exported.unwrap_err())

    try:
        target.write_bytes(exported.unwrap())
    except OSError as e:
        return Result.err(
            YkgpgError(
                message=f"failed to write public key: {e}",
                category=ErrorCategory.STORAGE,
                cause=e,
            )
        )

    ctx.prompts.success(f"Public key exported to: {target}")
    ctx.prompts.instructions(
        "You can:",
        [
            f"Upload to {MANUAL_UPLOAD_URL}",
            "Add to GitHub: Settings, SSH and GPG keys, New GPG key",
            "Share with others for encrypted communication",
        ],
    )
    return Result.ok(None)


# Configuration commands


def config_init(prompts: Prompts, current: Config, path: Path | None = None) -> Result[Path]:
    """Interactively collect the identity settings and write the config file."""
    prompts.header("Configure ykgpg")
    prompts.text("Find your key id and fingerprint with:")
    prompts.text("  gpg --list-secret-keys --keyid-format=long")
    prompts.text()

    def ask(label: str, value: str, required: bool = False) -> str:
        answer = prompts.ask(label, default=value)
        if required and not answer:
            answer = prompts.ask_required(label)
        return answer

    cfg = Config(
        primary_key_id=ask("Primary key ID", current.primary_key_id, required=True),
        primary_key_fingerprint=ask(
            "Primary key fingerprint", current.primary_key_fingerprint, required=True
        ),
        user_name=ask("Your name", current.user_name, required=True),
        user_email=ask("Your email", current.user_email, required=True),
        keyserver=ask("Keyserver", current.keyserver),
        master_key_path=ask("Master key path (optional)", current.master_key_path),
        backup_dir=ask("Backup directory", current.backup_dir),
        no_color=current.no_color,
    )
    written = write_config(cfg, path)
    if written.is_ok():
        prompts.success(f"Configuration written to {written.unwrap()}")
    return written


def config_show(prompts: Prompts, config: Config) -> Result[None]:
    prompts.header("Effective Configuration")
    source = config.config_file or "none"
    prompts.key_value("Config file", str(source))
    prompts.text()
    prompts.table(
        ["Setting", "Value", "Source"],
        [
            [name, str(value), config.sources.get(name, "default")]
            for name, value in config.to_dict().items()
        ],
    )
    missing = config.validate()
    if missing.is_err():
        prompts.warning(str(missing.unwrap_err()))
    return Result.ok(None)

