"""Application entry point for the switchboard monitor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from functools import partial
from getpass import getpass
from logging.handlers import RotatingFileHandler
from typing import Optional

from art import tprint
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from rich.text import Text

import settings
from adapters.notification_formatting import format_forward
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_bot_notifier import TelegramBotSink
from admin import AdminResult, AdminService, describe
from client import client_factory
from core.config import ControlConfig, DedupConfig, MatchingConfig, NotificationConfig
from core.models import LoginResult, MonitorStartResult
from core.supervisor import MonitoringSupervisor

NAME = "SWITCHBOARD"
FONT = "tarty-1"

_STYLE_FLAGS = ("bold", "italic", "underline", "strikethrough", "quote", "monospace", "spoiler")

console = Console()


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/switchboard.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)


def _build_services(require_sink: bool = False) -> tuple[MonitoringSupervisor, AdminService]:
    bot_token = os.getenv("BOT_API", "")
    # Fail fast when forwarding is about to start without a bot.
    if require_sink and not bot_token:
        raise RuntimeError("BOT_API is required to forward messages")

    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()

    notifications = NotificationConfig(
        format=settings.NOTIFICATION_FORMAT,
        max_content_chars=settings.MAX_CONTENT_CHARS,
    )
    supervisor = MonitoringSupervisor(
        storage,
        TelegramBotSink(bot_token, parse_mode=notifications.format),
        client_factory(settings.SESSIONS_DIR),
        partial(
            format_forward,
            mode=notifications.format,
            max_content_chars=notifications.max_content_chars,
        ),
        dedup_config=DedupConfig(
            retention_hours=settings.DEDUP_RETENTION_HOURS,
            sweep_interval_seconds=settings.DEDUP_SWEEP_INTERVAL_SECONDS,
        ),
        matching_config=MatchingConfig(fuzzy_threshold=settings.FUZZY_THRESHOLD),
        control_config=ControlConfig(sync_interval_seconds=settings.SYNC_INTERVAL_SECONDS),
    )
    supervisor.load()
    return supervisor, AdminService(supervisor, storage)


def _report(result: AdminResult) -> None:
    style = "green" if result.succeeded else "red"
    console.print(Text(describe(result), style=style))


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _print_accounts(statuses) -> None:
    table = Table(title="Accounts")
    for column in ("ID", "Name", "Phone", "Enabled", "Logged in", "Last login"):
        table.add_column(column)
    for status in statuses:
        last_login = status.last_login_time.strftime("%Y-%m-%d %H:%M:%S") if status.last_login_time else "-"
        table.add_row(
            str(status.account_id),
            status.name,
            status.phone_number,
            _yes_no(status.is_enabled),
            _yes_no(status.is_logged_in),
            last_login,
        )
    console.print(table)


# -- run ---------------------------------------------------------------------


async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops only deliver KeyboardInterrupt.
            pass
    await stop.wait()


async def _run_monitor() -> None:
    logger = logging.getLogger(__name__)
    supervisor, admin = _build_services(require_sink=True)
    try:
        restored = await supervisor.resume_all()
        logger.info("%s account sessions are ready", restored)
        supervisor.start_sweeper()
        # Picks up changes made by administrative commands in other processes.
        supervisor.start_sync()

        result = await admin.start_monitoring()
        _report(result)
        if result.data not in (MonitorStartResult.STARTED, MonitorStartResult.ALREADY_RUNNING):
            return

        logger.info("Listening for incoming messages...")
        await _wait_for_shutdown()
        logger.info("Shutting down")
    finally:
        await supervisor.close()


def _run() -> None:
    _print_banner()
    logging.getLogger(__name__).info("Starting switchboard")
    try:
        asyncio.run(_run_monitor())
    except KeyboardInterrupt:
        pass


# -- administrative commands -------------------------------------------------


async def _login(admin: AdminService, args: argparse.Namespace) -> None:
    result = await admin.login(args.account_id)
    while result.data in (LoginResult.WAITING_FOR_CODE, LoginResult.WAITING_FOR_PASSWORD):
        _report(result)
        if result.data is LoginResult.WAITING_FOR_CODE:
            credential = input("Login code: ").strip()
        else:
            credential = getpass("2FA password: ")
        result = await admin.login(args.account_id, credential)
    _report(result)


async def _dialogs(admin: AdminService, args: argparse.Namespace) -> None:
    result = await admin.list_dialogs(args.account_id)
    if not result.succeeded:
        _report(result)
        return
    table = Table(title=f"Dialogs of account {args.account_id}")
    table.add_column("Chat ID")
    table.add_column("Title")
    for entry in result.data:
        table.add_row(str(entry.id), entry.title)
    console.print(table)


async def _accounts(admin: AdminService, args: argparse.Namespace) -> None:
    if args.accounts_command == "add":
        _report(
            admin.add_account(
                name=args.name,
                api_id=args.api_id,
                api_hash=args.api_hash,
                phone_number=args.phone,
                is_enabled=not args.disabled,
            )
        )
    elif args.accounts_command == "remove":
        _report(await admin.remove_account(args.account_id))
    elif args.accounts_command in {"enable", "disable"}:
        _report(await admin.set_account_enabled(args.account_id, args.accounts_command == "enable"))
    else:
        _print_accounts(admin.list_accounts().data)


async def _keywords(admin: AdminService, args: argparse.Namespace) -> None:
    if args.keywords_command == "add":
        style = {flag: getattr(args, flag) for flag in _STYLE_FLAGS}
        _report(
            admin.add_keyword(
                args.content,
                match_mode=args.mode,
                action=args.action,
                case_sensitive=args.case_sensitive,
                **style,
            )
        )
        return
    if args.keywords_command == "remove":
        _report(admin.remove_keyword(args.keyword_id))
        return

    table = Table(title="Keywords")
    for column in ("ID", "Content", "Mode", "Action", "Enabled", "Case sensitive"):
        table.add_column(column)
    for keyword in admin.list_keywords().data:
        table.add_row(
            str(keyword["id"]),
            keyword["content"],
            keyword["match_mode"],
            keyword["action"],
            _yes_no(keyword["enabled"]),
            _yes_no(keyword["case_sensitive"]),
        )
    console.print(table)


async def _target(admin: AdminService, args: argparse.Namespace) -> None:
    _report(admin.set_target(args.chat_id))


async def _request(admin: AdminService, args: argparse.Namespace) -> None:
    _report(admin.request_monitoring(args.command == "start"))


async def _status(admin: AdminService, args: argparse.Namespace) -> None:
    data = admin.status().data
    target = data["target_chat_id"]
    console.print(Text(f"Target chat: {target if target is not None else 'not set'}"))
    console.print(Text(f"Monitoring: {_yes_no(data['monitoring'])}"))
    _print_accounts(data["accounts"])


COMMANDS = {
    "accounts": _accounts,
    "login": _login,
    "dialogs": _dialogs,
    "target": _target,
    "keywords": _keywords,
    "status": _status,
    "start": _request,
    "stop": _request,
}


async def _run_command(args: argparse.Namespace) -> None:
    # Telethon clients are created inside the running loop.
    supervisor, admin = _build_services()
    try:
        await COMMANDS[args.command](admin, args)
    finally:
        await supervisor.close()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="switchboard")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start monitoring every enabled account")
    subparsers.add_parser("status", help="Show the target chat and account states")
    subparsers.add_parser("start", help="Ask the running monitor to start monitoring")
    subparsers.add_parser("stop", help="Ask the running monitor to stop monitoring")

    accounts = subparsers.add_parser("accounts", help="Manage monitored accounts")
    accounts_sub = accounts.add_subparsers(dest="accounts_command")
    accounts_sub.add_parser("list", help="List accounts")
    add = accounts_sub.add_parser("add", help="Register an account")
    add.add_argument("--name", required=True)
    add.add_argument("--api-id", type=int, required=True)
    add.add_argument("--api-hash", required=True)
    add.add_argument("--phone", required=True, help="Phone number in international format")
    add.add_argument("--disabled", action="store_true", help="Store the account disabled")
    for name in ("remove", "enable", "disable"):
        command = accounts_sub.add_parser(name, help=f"{name.capitalize()} an account")
        command.add_argument("account_id", type=int)

    login = subparsers.add_parser("login", help="Log an account in interactively")
    login.add_argument("account_id", type=int)

    dialogs = subparsers.add_parser("dialogs", help="List chats an account can post to")
    dialogs.add_argument("account_id", type=int)

    target = subparsers.add_parser("target", help="Set the destination chat id")
    target.add_argument("chat_id", type=int)

    keywords = subparsers.add_parser("keywords", help="Manage keyword rules")
    keywords_sub = keywords.add_subparsers(dest="keywords_command")
    keywords_sub.add_parser("list", help="List keywords")
    kw_add = keywords_sub.add_parser("add", help="Add a keyword rule")
    kw_add.add_argument("content")
    kw_add.add_argument("--mode", default="Substring")
    kw_add.add_argument("--action", default="Monitor", choices=["Monitor", "Exclude"])
    kw_add.add_argument("--case-sensitive", action="store_true")
    for flag in _STYLE_FLAGS:
        kw_add.add_argument(f"--{flag}", action="store_true")
    kw_remove = keywords_sub.add_parser("remove", help="Remove a keyword rule")
    kw_remove.add_argument("keyword_id", type=int)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    load_dotenv()
    _configure_logging()

    args = _build_parser().parse_args(argv)
    if args.command in COMMANDS:
        asyncio.run(_run_command(args))
        return
    _run()


if __name__ == "__main__":
    main()
