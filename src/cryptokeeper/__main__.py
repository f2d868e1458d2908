# Main Entry Point - `keeper` command line
#
# Thin UI layer over the vault core. Every command maps to one Session
# (or ClipboardGuard) operation; nothing here touches bytes on disk.
#
#   keeper init | list | view | add | edit | rename | delete | protect
#   keeper copy | search | export | import | passwd | config
#   keeper recovery | recover
#
# Scripting: `--json` on read commands prints plain JSON, and
# `--password-stdin` reads passwords/secrets one per line from stdin.
#
# Exit codes: 0 ok, 1 error, 2 wrong password, 130 interrupted.

import argparse
import getpass
import json
import sys
from typing import Any, Callable, Dict, List, Optional

from . import __version__
from .clipboard_guard import ClipboardGuard
from .core import (
    AuditLogger,
    EventSeverity,
    EventType,
    KeeperConfig,
    get_audit_logger,
    load_config,
    save_config,
    set_audit_logger,
    set_config,
)
from .vault import (
    EntryKind,
    EntrySummary,
    RECOVERY_QUESTIONS,
    KdfParams,
    Session,
    VaultError,
    VaultStore,
    WrongPasswordError,
    check_master_password,
)
from .vault.vault_store import ensure_private_dir

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_WRONG_PASSWORD = 2
EXIT_INTERRUPTED = 130


class Prompter:
    """Hidden input from the terminal, or line by line from stdin."""

    def __init__(self, from_stdin: bool = False):
        self.from_stdin = from_stdin

    def hidden(self, prompt: str) -> str:
        if self.from_stdin:
            line = sys.stdin.readline()
            if not line:
                raise VaultError(f"Expected another line on stdin for: {prompt.strip(': ')}")
            return line.rstrip("\r\n")
        return getpass.getpass(prompt)

    def new_password(self, prompt: str = "New master password: ", master: bool = True) -> str:
        """Prompt (and confirm) a new password. Master passwords must pass the policy."""
        password = self.hidden(prompt)
        if master:
            is_valid, error_msg = check_master_password(password)
            if not is_valid:
                raise VaultError(error_msg)
        elif not password:
            raise VaultError("Password must not be empty.")
        if not self.from_stdin and self.hidden("Confirm password: ") != password:
            raise VaultError("Passwords do not match.")
        return password

    def confirm(self, question: str) -> bool:
        if self.from_stdin:
            return False
        return input(f"{question} [y/N] ").strip().lower() in ("y", "yes")


# ── Output ───────────────────────────────────────────────────────────


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_table(summaries: List[EntrySummary]) -> None:
    if not summaries:
        print("Vault is empty. Add an entry with `keeper add`.")
        return
    width = max(len(s.label) for s in summaries)
    for index, summary in enumerate(summaries, 1):
        network = f"  [{summary.network}]" if summary.network else ""
        protected = "  (view password)" if summary.protected else ""
        print(
            f"{index:>3}  {summary.label:<{width}}  {summary.kind.display_name:<11}"
            f"  {summary.updated_at:%Y-%m-%d %H:%M}{network}{protected}"
        )


def _print_entry(data: Dict[str, Any]) -> None:
    rows = [
        ("Label", data["label"]),
        ("Kind", EntryKind(data["kind"]).display_name),
        ("Locked", "view password" if data["protected"] else ""),
        ("Network", data["network"]),
        ("Address", data["public_address"]),
        ("Notes", data["metadata"]),
        ("Created", data["created_at"]),
        ("Updated", data["updated_at"]),
        ("ID", data["id"]),
    ]
    for name, value in rows:
        if value:
            print(f"{name + ':':<9} {value}")
    if "secret" in data:
        print()
        print(data["secret"])


# ── Commands ─────────────────────────────────────────────────────────


def _unlock(args, config: KeeperConfig) -> Session:
    password = args.prompter.hidden("Master password: ")
    return Session.unlock(config.vault_path, password)


def _view_password(args, summary: EntrySummary) -> Optional[str]:
    if not summary.protected:
        return None
    return args.prompter.hidden(f"View password for '{summary.label}': ")


def cmd_init(args, config: KeeperConfig) -> int:
    if VaultStore.exists(config.vault_path):
        raise VaultError(f"Vault already exists at {config.vault_path}.")
    params = KdfParams(
        memory_cost=args.memory_cost or config.kdf_memory_cost,
        time_cost=args.time_cost or config.kdf_time_cost,
        parallelism=args.parallelism or config.kdf_parallelism,
    )
    password = args.prompter.new_password("Choose a master password: ")
    with Session.create(config.vault_path, password, kdf_params=params):
        pass
    print(f"Vault created at {config.vault_path}")
    return EXIT_OK


def cmd_list(args, config: KeeperConfig) -> int:
    # Labels are cleartext; no password needed
    summaries = VaultStore().peek(config.vault_path)
    if args.json:
        _print_json([s.to_dict() for s in summaries])
    else:
        _print_table(summaries)
    return EXIT_OK


def cmd_view(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        summary = session.resolve(args.ref)
        if args.hide_secret:
            data = summary.to_dict()
        else:
            with session.get(summary.id, view_password=_view_password(args, summary)) as entry:
                data = entry.to_dict(reveal=True)
    if args.json:
        _print_json(data)
    else:
        _print_entry(data)
    return EXIT_OK


def cmd_add(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        secret = args.prompter.hidden(f"{args.kind.display_name}: ")
        view_password = (
            args.prompter.new_password("View password: ", master=False) if args.view_password else None
        )
        summary = session.add(
            label=args.label,
            kind=args.kind,
            secret=secret,
            metadata=args.notes or "",
            network=args.network or "",
            public_address=args.address,
            view_password=view_password,
        )
        index = len(session)
    print(f"Added '{summary.label}' as #{index}")
    return EXIT_OK


def cmd_edit(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        summary = session.resolve(args.ref)
        secret = args.prompter.hidden("New secret: ") if args.secret else None
        view_password = _view_password(args, summary) if args.secret else None
        updated = session.update(
            summary.id,
            view_password=view_password,
            kind=args.kind,
            secret=secret,
            metadata=args.notes,
            network=args.network,
            public_address=args.address,
        )
    print(f"Updated '{updated.label}'")
    return EXIT_OK


def cmd_rename(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        summary = session.resolve(args.ref)
        updated = session.update(summary.id, label=args.new_label)
    print(f"Renamed '{summary.label}' to '{updated.label}'")
    return EXIT_OK


def cmd_delete(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        summary = session.resolve(args.ref)
        if not args.yes and not args.prompter.confirm(
            f"Permanently delete '{summary.label}'? This cannot be undone."
        ):
            print("Cancelled.")
            return EXIT_ERROR
        session.delete(summary.id)
    print(f"Deleted '{summary.label}'")
    return EXIT_OK


def cmd_copy(args, config: KeeperConfig) -> int:
    timeout = args.timeout or config.clipboard_timeout
    guard = ClipboardGuard(timeout=timeout)
    with _unlock(args, config) as session:
        summary = session.resolve(args.ref)
        with session.get(summary.id, view_password=_view_password(args, summary)) as entry:
            guard.copy(entry.secret, label=summary.label)

    print(f"Copied '{summary.label}' to clipboard. Clearing in {timeout:g}s (Ctrl+C to clear now).")
    try:
        guard.wait()
    except KeyboardInterrupt:
        guard.cancel()
        print("\nClipboard cleared.")
        return EXIT_OK
    print("Clipboard cleared.")
    return EXIT_OK


def cmd_search(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        results = session.search(args.query)
    if args.json:
        _print_json([s.to_dict() for s in results])
    elif not results:
        print(f"No entries match '{args.query}'.")
    else:
        _print_table(results)
    return EXIT_OK


def cmd_export(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        password = args.prompter.new_password("Backup password: ") if args.new_password else None
        session.export(args.path, password=password)
        count = len(session)
    print(f"Exported {count} entries to {args.path}")
    return EXIT_OK


def cmd_import(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        backup_password = args.prompter.hidden("Backup password: ")
        report = session.import_vault(args.path, backup_password, overwrite=args.overwrite)
    if args.json:
        _print_json(report.to_dict())
        return EXIT_OK
    print(f"Imported {len(report.imported)} entries from {args.path}")
    if report.overwritten:
        print(f"Overwrote {len(report.overwritten)} existing entries")
    if report.conflicts:
        print(f"Kept {len(report.conflicts)} existing entries (same id); use --overwrite to replace them")
    return EXIT_OK


def cmd_passwd(args, config: KeeperConfig) -> int:
    old_password = args.prompter.hidden("Current master password: ")
    with Session.unlock(config.vault_path, old_password) as session:
        new_password = args.prompter.new_password()
        question = session.recovery_question
        answer = None
        if question is not None:
            print(f"Recovery question: {question}")
            answer = args.prompter.hidden("Recovery answer (empty to clear recovery): ") or None
        session.change_password(
            old_password, new_password, kdf_params=config.kdf_params, recovery_answer=answer
        )
    print("Master password changed.")
    if question is not None and answer is None:
        print("Recovery question cleared. Set it up again with `keeper recovery`.")
    return EXIT_OK


def cmd_protect(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        summary = session.resolve(args.ref)
        if args.remove and not summary.protected:
            print(f"'{summary.label}' has no view password.")
            return EXIT_OK
        current = _view_password(args, summary)
        new_password = None if args.remove else args.prompter.new_password("New view password: ", master=False)
        session.set_view_password(summary.id, new_password, current_password=current)
    if args.remove:
        print(f"View password removed from '{summary.label}'")
    else:
        print(f"View password set on '{summary.label}'")
    return EXIT_OK


def cmd_recovery(args, config: KeeperConfig) -> int:
    with _unlock(args, config) as session:
        if args.clear:
            if session.clear_recovery():
                print("Recovery question cleared.")
            else:
                print("No recovery question was set.")
            return EXIT_OK
        if not 1 <= args.question <= len(RECOVERY_QUESTIONS):
            raise VaultError(f"Choose a question between 1 and {len(RECOVERY_QUESTIONS)}.")
        question = RECOVERY_QUESTIONS[args.question - 1]
        print(question)
        answer = args.prompter.hidden("Answer: ")
        if not args.prompter.from_stdin and args.prompter.hidden("Confirm answer: ") != answer:
            raise VaultError("Answers do not match.")
        session.set_recovery(question, answer)
    print("Recovery question saved. Keep the answer somewhere safe.")
    return EXIT_OK


def cmd_recover(args, config: KeeperConfig) -> int:
    question = Session.read_recovery_question(config.vault_path)
    print(question)
    answer = args.prompter.hidden("Answer: ")
    new_password = args.prompter.new_password()
    with Session.recover(config.vault_path, answer, new_password, kdf_params=config.kdf_params) as session:
        count = len(session)
    print(f"Master password reset. {count} entries recovered.")
    return EXIT_OK


def cmd_config(args, config: KeeperConfig) -> int:
    updates = {
        "clipboard_timeout": args.clipboard_timeout,
        "kdf_memory_cost": args.memory_cost,
        "kdf_time_cost": args.time_cost,
        "kdf_parallelism": args.parallelism,
    }
    updates = {k: v for k, v in updates.items() if v is not None}
    if updates:
        data = config.to_dict()
        data.update(updates)
        config = KeeperConfig.from_dict(data)
        save_config(config)
        set_config(config)
    if args.json:
        _print_json(config.to_dict())
    else:
        for key, value in config.to_dict().items():
            print(f"{key} = {value}")
    return EXIT_OK


# ── Parser ───────────────────────────────────────────────────────────


def _kind(value: str) -> EntryKind:
    try:
        return EntryKind.parse(value)
    except ValueError:
        choices = ", ".join(k.value for k in EntryKind)
        raise argparse.ArgumentTypeError(f"invalid kind '{value}' (choose from {choices})") from None


def _add_kdf_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--memory-cost", type=int, help="Argon2id memory in KiB")
    parser.add_argument("--time-cost", type=int, help="Argon2id passes")
    parser.add_argument("--parallelism", type=int, help="Argon2id lanes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keeper",
        description="CryptoKeeper - offline encrypted vault for crypto private keys and seed phrases",
    )
    parser.add_argument("--version", action="version", version=f"CryptoKeeper v{__version__}")
    parser.add_argument(
        "--vault-dir",
        help="Vault directory (default: $CRYPTOKEEPER_VAULT_DIR or ~/.cryptokeeper)",
    )
    parser.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read passwords and secrets from stdin, one per line (no prompts)",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("init", help="Create a new vault")
    _add_kdf_options(p)
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("list", help="List entries (no password needed)")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("view", help="Show an entry and its secret")
    p.add_argument("ref", help="Index, id or label")
    p.add_argument("--hide-secret", action="store_true", help="Show metadata only")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_view)

    p = sub.add_parser("add", help="Add an entry (secret is prompted for)")
    p.add_argument("label")
    p.add_argument("--kind", type=_kind, default=EntryKind.PRIVATE_KEY,
                   help="private-key (default), seed-phrase or other")
    p.add_argument("--network", help="e.g. Bitcoin, Ethereum")
    p.add_argument("--address", help="Public address")
    p.add_argument("--notes", help="Free-text notes")
    p.add_argument("--view-password", action="store_true",
                   help="Also lock the secret behind its own view password")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("edit", help="Change an entry's fields")
    p.add_argument("ref", help="Index, id or label")
    p.add_argument("--kind", type=_kind)
    p.add_argument("--network")
    p.add_argument("--address", help="Public address ('' to clear)")
    p.add_argument("--notes")
    p.add_argument("--secret", action="store_true", help="Prompt for a new secret")
    p.set_defaults(func=cmd_edit)

    p = sub.add_parser("rename", help="Rename an entry")
    p.add_argument("ref", help="Index, id or label")
    p.add_argument("new_label")
    p.set_defaults(func=cmd_rename)

    p = sub.add_parser("delete", help="Delete an entry permanently")
    p.add_argument("ref", help="Index, id or label")
    p.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("copy", help="Copy a secret to the clipboard, then auto-clear")
    p.add_argument("ref", help="Index, id or label")
    p.add_argument("--timeout", type=float, help="Seconds before clearing (default from config)")
    p.set_defaults(func=cmd_copy)

    p = sub.add_parser("search", help="Search label, network and notes")
    p.add_argument("query")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("export", help="Write an encrypted backup")
    p.add_argument("path")
    p.add_argument("--new-password", action="store_true",
                   help="Protect the backup with its own password")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Merge an encrypted backup")
    p.add_argument("path")
    p.add_argument("--overwrite", action="store_true",
                   help="Replace entries that already exist (matched by id)")
    p.add_argument("--json", action="store_true", help="Print the import report as JSON")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("protect", help="Set, change or remove an entry's view password")
    p.add_argument("ref", help="Index, id or label")
    p.add_argument("--remove", action="store_true", help="Remove the view password")
    p.set_defaults(func=cmd_protect)

    p = sub.add_parser("passwd", help="Change the master password")
    p.set_defaults(func=cmd_passwd)

    questions = "; ".join(f"{i}: {q}" for i, q in enumerate(RECOVERY_QUESTIONS, 1))
    p = sub.add_parser("recovery", help="Set up a security question for password recovery")
    p.add_argument("--question", type=int, default=1, help=f"Question number ({questions})")
    p.add_argument("--clear", action="store_true", help="Remove the recovery question")
    p.set_defaults(func=cmd_recovery)

    p = sub.add_parser("recover", help="Reset a forgotten master password with the recovery answer")
    p.set_defaults(func=cmd_recover)

    p = sub.add_parser("config", help="Show or change settings")
    p.add_argument("--clipboard-timeout", type=float, help="Seconds before the clipboard is cleared")
    _add_kdf_options(p)
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_config)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the `keeper` console script."""
    parser = build_parser()
    args = parser.parse_args(argv)
    args.prompter = Prompter(from_stdin=args.password_stdin)
    command: Callable = args.func

    try:
        config = load_config(args.vault_dir)
        set_config(config)
        ensure_private_dir(config.vault_dir)
        set_audit_logger(AuditLogger(config.audit_log_dir))

        get_audit_logger().log_event(
            event_type=EventType.SYSTEM_START,
            severity=EventSeverity.INFO,
            message="CryptoKeeper command started",
            details={"version": __version__, "command": args.command},
        )
        return command(args, config)

    except WrongPasswordError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_WRONG_PASSWORD
    except (VaultError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
