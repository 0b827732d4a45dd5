from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from . import diagnostics, workflows
from .config import load_config
from .errors import ErrorLogger, UserCancelledError, YkgpgError
from .executor import CommandExecutor
from .prompts import Prompts
from .types import Result
from .workflows import WorkflowContext

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

COMMAND_ALIASES = {
    "metadata": "set-metadata",
    "export-public": "export",
    "check": "verify",
}

# These run before a complete identity is configured
UNVALIDATED_COMMANDS = ("config", "init")

# Global flag dest -> Config field
CONFIG_FLAGS = {
    "key_id": "primary_key_id",
    "fingerprint": "primary_key_fingerprint",
    "name": "user_name",
    "email": "user_email",
    "keyserver": "keyserver",
    "master_key_path": "master_key_path",
    "backup_dir": "backup_dir",
    "no_color": "no_color",
}


def get_parser() -> argparse.ArgumentParser:
    from . import __version__

    parser = argparse.ArgumentParser(
        prog="ykgpg",
        description="Manage GPG signing subkeys on YubiKeys with an offline master key",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--key-id", help="Primary key ID (long form)")
    parser.add_argument("--fingerprint", help="Primary key fingerprint")
    parser.add_argument("--name", help="Your name as it appears on the key")
    parser.add_argument("--email", help="Your email as it appears on the key")
    parser.add_argument("--keyserver", help="Keyserver URL (default: hkps://keys.openpgp.org)")
    parser.add_argument("--master-key-path", help="Path to the offline master key backup")
    parser.add_argument("--backup-dir", help="Directory for keyring backups")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file (default: ~/.config/ykgpg/config.yaml, then ./config.yaml)",
    )
    parser.add_argument(
        "--gnupghome",
        type=Path,
        default=None,
        help="Custom GnuPG home directory",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        default=None,
        help="Disable colored output",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Show debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("status", help="Show current key and YubiKey status")
    subparsers.add_parser("init", help="Initialize a new YubiKey for OpenPGP use")
    subparsers.add_parser("setup", help="Add a signing subkey to a new YubiKey (interactive)")
    subparsers.add_parser(
        "setup-batch", help="Add a signing subkey with quick-add-key, then move it to a YubiKey"
    )
    subparsers.add_parser("move-subkey", help="Move an existing signing subkey to a YubiKey")
    subparsers.add_parser("revoke", help="Revoke a subkey (for lost/compromised YubiKeys)")
    subparsers.add_parser("extend", help="Extend expiration dates on keys")
    subparsers.add_parser("cleanup", help="Remove old keys from the keyring")
    subparsers.add_parser(
        "set-metadata", aliases=["metadata"], help="Set cardholder name and URL on YubiKey"
    )

    export_parser = subparsers.add_parser(
        "export", aliases=["export-public"], help="Export public key to file"
    )
    export_parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Output file path (default: ~/public-key-YYYYMMDD.asc)",
    )

    subparsers.add_parser("verify", aliases=["check"], help="Verify GPG/YubiKey/git setup")

    config_parser = subparsers.add_parser("config", help="Manage the configuration file")
    config_subparsers = config_parser.add_subparsers(
        dest="config_command", help="Config commands"
    )
    config_subparsers.add_parser("init", help="Create a config file interactively")
    config_subparsers.add_parser("show", help="Show effective settings and their sources")

    return parser


def configure_logging(verbose: bool) -> None:
    handler = RichHandler(
        console=Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=verbose,
    )
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(name)s: %(message)s",
        handlers=[handler],
        force=True,
    )


def config_overrides(ns: argparse.Namespace) -> dict[str, object]:
    return {field: getattr(ns, flag) for flag, field in CONFIG_FLAGS.items()}


def report_error(
    prompts: Prompts,
    error: Exception,
    error_logger: ErrorLogger | None = None,
) -> None:
    prompts.show_error(error)
    if not isinstance(error, YkgpgError):
        return
    try:
        (error_logger or ErrorLogger()).log_error(error)
    except OSError as e:
        logger.warning("could not write error log: %s", e)


def finish(result: Result, prompts: Prompts, error_logger: ErrorLogger | None = None) -> int:
    if result.is_ok():
        return EXIT_OK
    error = result.unwrap_err()
    if isinstance(error, UserCancelledError):
        prompts.warning(str(error))
        return EXIT_CANCELLED
    report_error(prompts, error, error_logger)
    return EXIT_FAILURE


def cmd_config(ns: argparse.Namespace, ctx: WorkflowContext) -> Result:
    if ns.config_command == "init":
        path = ns.config.expanduser() if ns.config else None
        return workflows.config_init(ctx.prompts, ctx.config, path=path)
    return workflows.config_show(ctx.prompts, ctx.config)


def dispatch(command: str, ns: argparse.Namespace, ctx: WorkflowContext) -> Result:
    if command == "status":
        return workflows.status(ctx)
    elif command == "init":
        return workflows.init_card(ctx)
    elif command == "setup":
        return workflows.setup(ctx)
    elif command == "setup-batch":
        return workflows.setup_batch(ctx)
    elif command == "move-subkey":
        return workflows.move_subkey(ctx)
    elif command == "revoke":
        return workflows.revoke(ctx)
    elif command == "extend":
        return workflows.extend(ctx)
    elif command == "cleanup":
        return workflows.cleanup(ctx)
    elif command == "set-metadata":
        return workflows.set_metadata(ctx)
    elif command == "export":
        return workflows.export_public_key(ctx, output=ns.output)
    elif command == "verify":
        return diagnostics.verify(ctx)
    elif command == "config":
        return cmd_config(ns, ctx)
    raise ValueError(f"unknown command: {command}")


def run(
    args: list[str],
    prompts: Prompts | None = None,
    executor: CommandExecutor | None = None,
    error_logger: ErrorLogger | None = None,
) -> int:
    """Main entry point."""
    parser = get_parser()
    ns = parser.parse_args(args)
    configure_logging(ns.verbose)

    if not ns.command:
        parser.print_help()
        return EXIT_FAILURE
    command = COMMAND_ALIASES.get(ns.command, ns.command)

    config_path = ns.config
    search_paths = None
    if command == "config" and config_path is not None and not config_path.expanduser().exists():
        # config init may be about to create this file
        config_path, search_paths = None, []
    loaded = load_config(config_path, overrides=config_overrides(ns), search_paths=search_paths)
    if loaded.is_err():
        report_error(prompts or Prompts(), loaded.unwrap_err(), error_logger)
        return EXIT_FAILURE
    config = loaded.unwrap()
    prompts = prompts or Prompts(no_color=config.no_color)
    logger.debug("configuration sources: %s", config.sources)

    if command not in UNVALIDATED_COMMANDS:
        valid = config.validate()
        if valid.is_err():
            report_error(prompts, valid.unwrap_err(), error_logger)
            return EXIT_FAILURE

    ctx = WorkflowContext.create(config, prompts, executor or CommandExecutor(ns.gnupghome))
    try:
        result = dispatch(command, ns, ctx)
    except UserCancelledError as e:
        result = Result.err(e)
    except KeyboardInterrupt:
        prompts.warning("Interrupted")
        return EXIT_CANCELLED
    return finish(result, prompts, error_logger)
