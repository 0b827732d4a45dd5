"""Manage GPG signing subkeys on YubiKeys.

The primary (master) key lives offline. ykgpg brings it into the keyring only
for the few operations that need it, guides the operator through the
interactive gpg sessions, and takes it offline again afterwards.
"""

from .backup import create_backup, verify_backup_complete
from .config import Config, load_config, write_config
from .diagnostics import VerifyReport, find_signing_subkey, verify
from .errors import (
    BackupError,
    CommandError,
    CommandTimeoutError,
    ConfigError,
    DetectionInconclusiveError,
    DetectionTimeoutError,
    ErrorCategory,
    ErrorLogger,
    GPGOperationError,
    HardwareError,
    MasterKeyError,
    RecoveryHint,
    TokenNotInitializedError,
    TokenUnsupportedError,
    ToolNotFoundError,
    UserCancelledError,
    VerificationError,
    WorkflowError,
    YkgpgError,
    get_recovery_hints_for_message,
)
from .executor import CommandExecutor, MockExecutor
from .gpg_ops import GPGOperations
from .lifecycle import MasterKeyLifecycle
from .main import run
from .parser import format_key_list, parse_card_status, parse_key_line, parse_key_list
from .prompts import MockPrompts, Prompts
from .types import (
    BackupRecord,
    Capability,
    CardStatus,
    KeyKind,
    KeyRecord,
    KeySlot,
    MasterKeyState,
    Result,
)
from .workflows import GuidedStep, StepOutcome, WorkflowContext, run_guided_step
from .yubikey_ops import YubiKeyOperations, token_available

__version__ = "0.1.0"

__all__ = [
    # Types
    "BackupRecord",
    "Capability",
    "CardStatus",
    "KeyKind",
    "KeyRecord",
    "KeySlot",
    "MasterKeyState",
    "Result",
    # Operations
    "CommandExecutor",
    "MockExecutor",
    "GPGOperations",
    "YubiKeyOperations",
    "token_available",
    "MasterKeyLifecycle",
    # Parsing
    "parse_key_line",
    "parse_key_list",
    "parse_card_status",
    "format_key_list",
    # Backup
    "create_backup",
    "verify_backup_complete",
    # Configuration
    "Config",
    "load_config",
    "write_config",
    # Prompts
    "Prompts",
    "MockPrompts",
    # Workflows
    "WorkflowContext",
    "GuidedStep",
    "StepOutcome",
    "run_guided_step",
    "VerifyReport",
    "find_signing_subkey",
    "verify",
    # Errors
    "YkgpgError",
    "ErrorCategory",
    "RecoveryHint",
    "ToolNotFoundError",
    "CommandError",
    "CommandTimeoutError",
    "GPGOperationError",
    "HardwareError",
    "TokenUnsupportedError",
    "TokenNotInitializedError",
    "DetectionInconclusiveError",
    "DetectionTimeoutError",
    "MasterKeyError",
    "BackupError",
    "ConfigError",
    "WorkflowError",
    "VerificationError",
    "UserCancelledError",
    "ErrorLogger",
    "get_recovery_hints_for_message",
    # Main
    "run",
    "__version__",
]
