"""Tests for the guided workflows, driven through MockExecutor and MockPrompts."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from pathlib import Path

import pytest

from ykgpg import workflows
from ykgpg.config import Config, load_config
from ykgpg.errors import (
    CommandError,
    ErrorCategory,
    GPGOperationError,
    HardwareError,
    TokenUnsupportedError,
    WorkflowError,
)
from ykgpg.executor import MockExecutor
from ykgpg.prompts import MockPrompts
from ykgpg.types import Result
from ykgpg.workflows import (
    GuidedStep,
    StepOutcome,
    WorkflowContext,
    master_present,
    require_token,
    run_guided_step,
    same_key_id,
    subkey_expiry,
)

KEY_ID = "ABCDEF0123456789"
FINGERPRINT = "0123456789ABCDEFFEDCBA98ABCDEF0123456789"
CARD = "gpg --card-status"
LIST = f"gpg --list-secret-keys --keyid-format=long {KEY_ID}"
SEND = f"gpg --keyserver hkps://keys.openpgp.org --send-keys {KEY_ID}"
NOT_SUPPORTED = "gpg: selecting card failed: Operation not supported by device"

Fixture = Callable[[str], str]


def make_ctx(
    config: Config,
    executor: MockExecutor,
    answers: list[str] | None = None,
    confirmations: bool | list[bool] = True,
    proceed: bool = True,
) -> tuple[WorkflowContext, MockPrompts]:
    prompts = MockPrompts(answers=answers or [], confirmations=confirmations, proceed=proceed)
    return WorkflowContext.create(config, prompts, executor), prompts


def script_cards(executor: MockExecutor, fixture_text: Fixture, *names: str) -> None:
    executor.queue_outputs(CARD, *(fixture_text(name) for name in names))


class TestGuidedStep:
    """Test run_guided_step outcomes."""

    STEP = GuidedStep(title="Do it:", steps=("Type: save",), warnings=("Careful",))

    def test_completed(self, workflow_ctx: WorkflowContext, mock_prompts: MockPrompts) -> None:
        calls = []

        def session() -> Result[None]:
            calls.append(1)
            return Result.ok(None)

        outcome = run_guided_step(workflow_ctx, self.STEP, session)
        assert outcome.unwrap() == StepOutcome.COMPLETED
        assert calls == [1]
        assert mock_prompts.messages("WARNING") == ["Careful"]
        assert mock_prompts.waits == 1

    def test_cancelled_skips_session(
        self, test_config: Config, mock_executor: MockExecutor
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, proceed=False)

        def session() -> Result[None]:
            raise AssertionError("session must not run")

        assert run_guided_step(ctx, self.STEP, session).unwrap() == StepOutcome.CANCELLED
        assert "Step cancelled" in prompts.messages("INFO")

    def test_session_error_propagates(self, workflow_ctx: WorkflowContext) -> None:
        error = CommandError("gpg", ["--edit-key"], 1)
        outcome = run_guided_step(workflow_ctx, self.STEP, lambda: Result.err(error))
        assert outcome.unwrap_err() is error

    def test_tolerated_session_error(
        self, workflow_ctx: WorkflowContext, mock_prompts: MockPrompts
    ) -> None:
        step = GuidedStep(title="t", steps=(), tolerate_session_error=True)
        error = CommandError("gpg", ["--card-edit"], 1)
        outcome = run_guided_step(workflow_ctx, step, lambda: Result.err(error))
        assert outcome.unwrap() == StepOutcome.COMPLETED
        warnings = mock_prompts.messages("WARNING")
        assert any(m.startswith("Card edit session ended") for m in warnings)

    def test_failed_verification(self, workflow_ctx: WorkflowContext) -> None:
        outcome = run_guided_step(
            workflow_ctx, self.STEP, lambda: Result.ok(None), verify=lambda: False
        )
        assert outcome.unwrap() == StepOutcome.NOT_VERIFIED


class TestHelpers:
    def test_same_key_id(self) -> None:
        assert same_key_id("abcdef0123456789", KEY_ID)
        assert same_key_id("0xABCDEF0123456789", KEY_ID)
        assert same_key_id(KEY_ID, FINGERPRINT)
        assert same_key_id("0123 4567 89AB CDEF FEDC BA98 ABCD EF01 2345 6789", FINGERPRINT)
        assert not same_key_id("6789", FINGERPRINT)
        assert not same_key_id("", KEY_ID)

    def test_subkey_expiry(self) -> None:
        assert subkey_expiry(date(2025, 6, 1)) == "2030-06-01"

    def test_subkey_expiry_leap_day(self) -> None:
        assert subkey_expiry(date(2024, 2, 29)) == "2029-02-28"

    def test_master_present(self, fixture_text: Fixture) -> None:
        from ykgpg.parser import parse_key_list

        assert master_present(parse_key_list(fixture_text("list_secret_keys_master.txt")), KEY_ID)
        assert not master_present(
            parse_key_list(fixture_text("list_secret_keys_offline.txt")), KEY_ID
        )


class TestRequireToken:
    """Test token gating shared by the card workflows."""

    def test_present(
        self, workflow_ctx: WorkflowContext, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))
        card = require_token(workflow_ctx).unwrap()
        assert card.serial == "12345678"
        assert mock_executor.timeouts[0] == workflow_ctx.detection_timeout

    def test_absent(
        self,
        workflow_ctx: WorkflowContext,
        mock_executor: MockExecutor,
        mock_prompts: MockPrompts,
    ) -> None:
        mock_executor.set_error(CARD, CommandError("gpg", [], 2, "gpg: No such device"))
        error = require_token(workflow_ctx).unwrap_err()
        assert isinstance(error, HardwareError)
        assert mock_prompts.messages("ERROR") == [
            "No YubiKey detected. Please insert a YubiKey and try again."
        ]

    def test_unsupported_shows_guidance(
        self,
        workflow_ctx: WorkflowContext,
        mock_executor: MockExecutor,
        mock_prompts: MockPrompts,
        fixture_text: Fixture,
    ) -> None:
        mock_executor.set_error(CARD, CommandError("gpg", [], 2, NOT_SUPPORTED))
        mock_executor.set_output("ykman info", fixture_text("ykman_info_security_key.txt"))
        error = require_token(workflow_ctx).unwrap_err()
        assert isinstance(error, TokenUnsupportedError)
        assert (
            "This YubiKey model may not support OpenPGP functionality."
            in mock_prompts.messages("WARNING")
        )

    def test_guidance_can_be_suppressed(
        self,
        workflow_ctx: WorkflowContext,
        mock_executor: MockExecutor,
        mock_prompts: MockPrompts,
        fixture_text: Fixture,
    ) -> None:
        mock_executor.set_error(CARD, CommandError("gpg", [], 2, NOT_SUPPORTED))
        mock_executor.set_output("ykman info", fixture_text("ykman_info_security_key.txt"))
        require_token(workflow_ctx, guidance=False)
        assert mock_prompts.messages("WARNING") == []


class TestStatus:
    """Test the status command."""

    def test_reports_keys_and_token(
        self,
        workflow_ctx: WorkflowContext,
        mock_executor: MockExecutor,
        mock_prompts: MockPrompts,
        fixture_text: Fixture,
    ) -> None:
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_offline.txt"))
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))

        assert workflows.status(workflow_ctx).is_ok()
        assert "YubiKey detected!" in mock_prompts.messages("SUCCESS")
        assert mock_executor.interactive_calls == []

    def test_missing_primary_key(
        self, workflow_ctx: WorkflowContext, mock_prompts: MockPrompts
    ) -> None:
        error = workflows.status(workflow_ctx).unwrap_err()
        assert isinstance(error, WorkflowError)
        assert mock_prompts.messages("ERROR") == ["Primary key not found in keyring!"]

    def test_no_secret_key_in_keyring(
        self,
        workflow_ctx: WorkflowContext,
        mock_executor: MockExecutor,
        mock_prompts: MockPrompts,
    ) -> None:
        mock_executor.set_error(
            LIST, CommandError("gpg", [], 2, "gpg: error reading key: No secret key")
        )
        assert isinstance(workflows.status(workflow_ctx).unwrap_err(), WorkflowError)
        assert mock_prompts.messages("ERROR") == ["Primary key not found in keyring!"]

    def test_token_timeout_is_a_warning(
        self,
        workflow_ctx: WorkflowContext,
        mock_executor: MockExecutor,
        mock_prompts: MockPrompts,
        fixture_text: Fixture,
    ) -> None:
        from ykgpg.errors import CommandTimeoutError

        mock_executor.set_output(LIST, fixture_text("list_secret_keys_offline.txt"))
        mock_executor.set_error(CARD, CommandTimeoutError("gpg", ["--card-status"], 3.0))

        assert workflows.status(workflow_ctx).is_ok()
        assert mock_prompts.messages("WARNING")[0].startswith("Failed to check YubiKey")

    def test_no_token(
        self,
        workflow_ctx: WorkflowContext,
        mock_executor: MockExecutor,
        mock_prompts: MockPrompts,
        fixture_text: Fixture,
    ) -> None:
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_offline.txt"))
        mock_executor.set_error(CARD, CommandError("gpg", [], 2, "gpg: No such device"))

        assert workflows.status(workflow_ctx).is_ok()
        assert mock_prompts.messages("WARNING") == ["No YubiKey detected"]


class TestInitCard:
    """Test guided card initialization."""

    def test_declining_every_step(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, confirmations=False)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))

        assert workflows.init_card(ctx).is_ok()
        assert mock_executor.interactive_calls == []
        assert "YubiKey initialization complete!" in prompts.messages("SUCCESS")

    def test_card_edit_failures_are_tolerated(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))
        mock_executor.set_error("gpg --card-edit", CommandError("gpg", ["--card-edit"], 1))

        assert workflows.init_card(ctx).is_ok()
        assert mock_executor.count_calls("gpg", "--card-edit") == 3
        ended = [m for m in prompts.messages("WARNING") if m.startswith("Card edit session")]
        assert len(ended) == 3

    def test_existing_keys_warn(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, confirmations=False)
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))

        workflows.init_card(ctx)
        assert "This YubiKey already has keys configured." in prompts.messages("WARNING")

    def test_requires_token(
        self, workflow_ctx: WorkflowContext, mock_executor: MockExecutor
    ) -> None:
        mock_executor.set_error(CARD, CommandError("gpg", [], 2, "gpg: No such device"))
        assert isinstance(workflows.init_card(workflow_ctx).unwrap_err(), HardwareError)


class TestSetup:
    """Test the interactive setup workflow."""

    def test_happy_path(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor)
        script_cards(
            mock_executor,
            fixture_text,
            "card_status_empty.txt",
            "card_status_empty.txt",
            "card_status.txt",
        )
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.setup(ctx).is_ok()

        assert mock_executor.interactive_calls == [
            ["gpg", "--edit-key", KEY_ID],
            ["gpg", "--edit-key", KEY_ID],
        ]
        assert mock_executor.verify_call("gpg", "--import", test_config.master_key_path)
        assert mock_executor.verify_call(
            "gpg", "--batch", "--yes", "--delete-secret-keys", FINGERPRINT
        )
        successes = prompts.messages("SUCCESS")
        assert "Key moved to YubiKey, signature slot is populated" in successes
        assert "Master key removed from local keyring" in successes
        assert "Public key uploaded to hkps://keys.openpgp.org" in successes
        assert successes[-1] == "YubiKey setup complete!"
        assert list(test_config.backup_path.iterdir())

    def test_existing_signature_key_declined(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor, confirmations=False)
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))

        assert workflows.setup(ctx).is_ok()
        assert mock_executor.count_calls("gpg", "--export") == 0
        assert mock_executor.interactive_calls == []

    def test_master_not_imported(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_offline.txt"))

        error = workflows.setup(ctx).unwrap_err()
        assert isinstance(error, WorkflowError)
        assert "Import may have failed" in error.message

    def test_cancel_takes_master_offline(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor, proceed=False)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.setup(ctx).is_ok()
        assert mock_executor.interactive_calls == []
        assert mock_executor.count_calls("gpg", "--batch", "--yes", "--delete-secret-keys") == 1

    def test_backup_reminder_declined(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, confirmations=[False])
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.setup(ctx).is_ok()
        assert mock_executor.count_calls("gpg", "--edit-key") == 1
        assert "Backup first, then run 'ykgpg move-subkey' to continue." in prompts.messages(
            "INFO"
        )

    def test_unverified_move_shows_troubleshooting(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.setup(ctx).is_ok()
        assert any(m.startswith("Key may not have been moved") for m in prompts.messages("WARNING"))

    def test_backup_failure_stops_before_import(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))
        mock_executor.set_error("gpg --export-ownertrust", CommandError("gpg", [], 2))

        assert workflows.setup(ctx).is_err()
        assert not mock_executor.verify_call("gpg", "--import", test_config.master_key_path)


class TestSetupBatch:
    """Test the automated setup workflow."""

    def test_creates_subkey_then_guides_move(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor)
        script_cards(
            mock_executor,
            fixture_text,
            "card_status_empty.txt",
            "card_status_empty.txt",
            "card_status.txt",
        )
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.setup_batch(ctx, today=date(2024, 2, 29)).is_ok()

        assert mock_executor.interactive_calls[0][-4:] == [
            FINGERPRINT,
            "ed25519",
            "sign",
            "2029-02-28",
        ]
        assert mock_executor.interactive_calls[1] == ["gpg", "--edit-key", KEY_ID]
        assert "Setup complete for YubiKey 87654321" in prompts.messages("SUCCESS")

    def test_subkey_creation_failure(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))
        mock_executor.set_error("gpg --batch --passphrase-fd 0 --quick-add-key *", OSError("x"))

        error = workflows.setup_batch(ctx, today=date(2025, 1, 1)).unwrap_err()
        assert isinstance(error, WorkflowError)
        assert error.message.startswith("failed to create subkey")
        assert mock_executor.count_calls("gpg", "--edit-key") == 0


class TestMoveSubkey:
    """Test moving an existing subkey."""

    def test_rsa_card_declined(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, confirmations=False)
        mock_executor.set_output(CARD, fixture_text("card_status_empty.txt"))

        assert workflows.move_subkey(ctx).is_ok()
        assert prompts.questions == [
            "Continue anyway? (keytocard will fail if key types don't match)"
        ]
        assert mock_executor.interactive_calls == []

    def test_replaces_existing_signature_key(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor)
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.move_subkey(ctx).is_ok()
        assert "Continue anyway? This will replace the existing signature key." in prompts.questions
        assert mock_executor.interactive_calls == [["gpg", "--edit-key", KEY_ID]]
        assert "Subkey move complete!" in prompts.messages("SUCCESS")

    def test_master_missing_asks(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, confirmations=[True, False])
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_offline.txt"))

        assert workflows.move_subkey(ctx).is_ok()
        assert prompts.questions[-1].startswith("Continue anyway? (The subkey move may fail")
        assert mock_executor.interactive_calls == []

    def test_cancelled_move(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, proceed=False)
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.move_subkey(ctx).is_ok()
        assert mock_executor.count_calls("gpg", "--keyserver") == 0
        assert "Subkey move complete!" not in prompts.messages("SUCCESS")


class TestRevoke:
    """Test subkey revocation."""

    def test_revokes_and_publishes(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, answers=["1111222233334444"])
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.revoke(ctx).is_ok()
        assert mock_executor.interactive_calls == [["gpg", "--edit-key", KEY_ID]]
        assert mock_executor.verify_call(*SEND.split())
        assert "Subkey revoked. The revocation has been published." in prompts.messages("SUCCESS")

    def test_quit(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor, answers=["q"])
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.revoke(ctx).is_ok()
        assert mock_executor.count_calls("gpg", "--import") == 0

    def test_empty_answer_quits(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor)
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))
        assert workflows.revoke(ctx).is_ok()
        assert mock_executor.interactive_calls == []

    def test_unknown_key(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor, answers=["DEADBEEFDEADBEEF"])
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        error = workflows.revoke(ctx).unwrap_err()
        assert error.message == "key ID not found: DEADBEEFDEADBEEF"

    def test_cancelled_session_still_removes_master(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(
            test_config, mock_executor, answers=["1111222233334444"], proceed=False
        )
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.revoke(ctx).is_ok()
        assert mock_executor.count_calls("gpg", "--batch", "--yes", "--delete-secret-keys") == 1
        assert mock_executor.count_calls("gpg", "--keyserver") == 0

    def test_upload_declined(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(
            test_config,
            mock_executor,
            answers=["1111222233334444"],
            confirmations=[True, False],
        )
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.revoke(ctx).is_ok()
        assert prompts.messages("SUCCESS")[-1] == (
            "Subkey revoked. Upload the public key to publish the revocation."
        )


class TestExtend:
    def test_extends(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, answers=["2y"])
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        assert workflows.extend(ctx).is_ok()
        assert mock_executor.interactive_calls == [["gpg", "--edit-key", KEY_ID]]
        assert "Key expiration extended" in prompts.messages("SUCCESS")

    def test_requires_expiry(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, _ = make_ctx(test_config, mock_executor)
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        error = workflows.extend(ctx).unwrap_err()
        assert error.message == "no expiration provided"
        assert mock_executor.count_calls("gpg", "--import") == 0

    def test_missing_master_key_file(
        self, mock_executor: MockExecutor, fixture_text: Fixture, tmp_path: Path
    ) -> None:
        config = Config(
            primary_key_id=KEY_ID,
            primary_key_fingerprint=FINGERPRINT,
            master_key_path=str(tmp_path / "gone.asc"),
            backup_dir=str(tmp_path / "backups"),
        )
        ctx, _ = make_ctx(config, mock_executor, answers=["2y"])
        mock_executor.set_output(LIST, fixture_text("list_secret_keys_master.txt"))

        error = workflows.extend(ctx).unwrap_err()
        assert "master key not found" in error.message
        assert mock_executor.interactive_calls == []


class TestCleanup:
    """Test interactive key cleanup."""

    def test_deletes_requested_key(self, test_config: Config, mock_executor: MockExecutor) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, answers=["9999AAAABBBBCCCC", "q"])

        assert workflows.cleanup(ctx).is_ok()
        assert mock_executor.verify_call(
            "gpg", "--batch", "--yes", "--delete-secret-keys", "9999AAAABBBBCCCC"
        )
        assert mock_executor.verify_call(
            "gpg", "--batch", "--yes", "--delete-keys", "9999AAAABBBBCCCC"
        )
        assert "Deleted 9999AAAABBBBCCCC" in prompts.messages("SUCCESS")
        assert "Trust database cleaned" in prompts.messages("SUCCESS")

    def test_refuses_primary_key(self, test_config: Config, mock_executor: MockExecutor) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, answers=[KEY_ID, FINGERPRINT, ""])

        assert workflows.cleanup(ctx).is_ok()
        assert prompts.messages("ERROR") == ["Cannot delete primary key!"] * 2
        assert mock_executor.count_calls("gpg", "--batch") == 0

    def test_delete_failure_is_a_warning(
        self, test_config: Config, mock_executor: MockExecutor
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, answers=["1234", "q"])
        mock_executor.set_error(
            "gpg --batch --yes --delete-secret-keys 1234", CommandError("gpg", [], 2)
        )

        assert workflows.cleanup(ctx).is_ok()
        assert prompts.messages("WARNING")[0].startswith("Failed to delete secret key")
        assert "Deleted 1234" in prompts.messages("SUCCESS")

    def test_declined(self, test_config: Config, mock_executor: MockExecutor) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, confirmations=False)
        assert workflows.cleanup(ctx).is_ok()
        assert prompts.questions == [
            "Would you like to interactively delete keys?",
            "Clean up trust database?",
        ]
        assert not mock_executor.verify_call("gpg", "--check-trustdb")


class TestSetMetadata:
    def test_completed(
        self, workflow_ctx: WorkflowContext, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))
        assert workflows.set_metadata(workflow_ctx).is_ok()
        assert mock_executor.interactive_calls == [["gpg", "--card-edit"]]

    def test_session_failure(
        self, workflow_ctx: WorkflowContext, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))
        mock_executor.set_error("gpg --card-edit", CommandError("gpg", ["--card-edit"], 1))
        assert isinstance(workflows.set_metadata(workflow_ctx).unwrap_err(), GPGOperationError)

    def test_cancelled(
        self, test_config: Config, mock_executor: MockExecutor, fixture_text: Fixture
    ) -> None:
        ctx, prompts = make_ctx(test_config, mock_executor, proceed=False)
        mock_executor.set_output(CARD, fixture_text("card_status.txt"))
        assert workflows.set_metadata(ctx).is_ok()
        assert prompts.messages("SUCCESS") == []


class TestExportPublicKey:
    def test_writes_file(
        self, workflow_ctx: WorkflowContext, mock_executor: MockExecutor, tmp_path: Path
    ) -> None:
        mock_executor.set_output(f"gpg --export --armor {KEY_ID}", b"-----BEGIN PGP PUBLIC")
        target = tmp_path / "pub.asc"

        assert workflows.export_public_key(workflow_ctx, output=target).is_ok()
        assert target.read_bytes() == b"-----BEGIN PGP PUBLIC"

    def test_write_failure(self, workflow_ctx: WorkflowContext, tmp_path: Path) -> None:
        error = workflows.export_public_key(
            workflow_ctx, output=tmp_path / "missing" / "pub.asc"
        ).unwrap_err()
        assert error.category == ErrorCategory.STORAGE

    def test_default_path(self) -> None:
        path = workflows.default_export_path(date(2025, 1, 2))
        assert path.name == "public-key-20250102.asc"
        assert path.parent == Path.home()


class TestConfigCommands:
    """Test config init and config show."""

    def test_init_writes_file(self, tmp_path: Path) -> None:
        prompts = MockPrompts(answers=[KEY_ID, FINGERPRINT, "Test User", "test@example.com"])
        target = tmp_path / "config.yaml"

        assert workflows.config_init(prompts, Config(), path=target).unwrap() == target
        loaded = load_config(target, env={}).unwrap()
        assert loaded.primary_key_id == KEY_ID
        assert loaded.keyserver == "hkps://keys.openpgp.org"
        assert loaded.validate().is_ok()

    def test_init_insists_on_required_fields(self, tmp_path: Path) -> None:
        prompts = MockPrompts(answers=["", KEY_ID, FINGERPRINT, "Test User", "test@example.com"])
        target = tmp_path / "config.yaml"

        assert workflows.config_init(prompts, Config(), path=target).is_ok()
        assert prompts.questions[:2] == ["Primary key ID", "Primary key ID"]

    def test_init_keeps_current_values(self, test_config: Config, tmp_path: Path) -> None:
        target = tmp_path / "out.yaml"
        assert workflows.config_init(MockPrompts(), test_config, path=target).is_ok()
        assert load_config(target, env={}).unwrap().user_email == "test@example.com"

    @pytest.mark.parametrize(
        ("config", "warnings"),
        [
            (Config(), ["primary_key_id is required"]),
            (
                Config(
                    primary_key_id=KEY_ID,
                    primary_key_fingerprint=FINGERPRINT,
                    user_name="A",
                    user_email="a@b",
                ),
                [],
            ),
        ],
    )
    def test_show(self, config: Config, warnings: list[str]) -> None:
        prompts = MockPrompts()
        assert workflows.config_show(prompts, config).is_ok()
        assert prompts.messages("WARNING") == warnings
