"""
credvault command line.

    credvault init                 create the vault and store the master password in the keychain
    credvault set <key> [value]    store a credential (prompts, hidden, when value is omitted)
    credvault get <key>            print the raw value to stdout, nothing else
    credvault list                 credential names
    credvault delete <key>         remove a credential
    credvault check <config.json>  placeholders a configuration needs and which are missing
    credvault legacy ...           service/username record store
    credvault serve                local HTTP service

Status and prompts go to stderr. Exit code 0 on success, 1 on any failure.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as SettingsError

from credvault.client import VaultClient
from credvault.config import Settings, configure_logging, swap_settings
from credvault.core.errors import VaultError
from credvault.core.keystore import build_providers
from credvault.core.legacy_store import PasswordStore
from credvault.core.vault import CredentialVault
from credvault.prompt import SecretInput


def _err(message: str):
    sys.stderr.write(message + "\n")
    sys.stderr.flush()


def _settings_problems(exc: SettingsError) -> str:
    problems = []
    for error in exc.errors():
        field = str(error["loc"][0]).upper() if error.get("loc") else "SETTINGS"
        problems.append(f"CREDVAULT_{field}: {error['msg']}")
    return "; ".join(problems)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="credvault", description="Local encrypted credential vault")
    parser.add_argument("--home", type=str, help="Vault directory (default: $CREDVAULT_HOME or ~/.config/credvault)")

    sub = parser.add_subparsers(dest="command")

    init_p = sub.add_parser("init", help="Initialize vault")
    init_p.add_argument("--force", action="store_true", help="Overwrite an existing vault without asking")

    set_p = sub.add_parser("set", help="Store credential")
    set_p.add_argument("key", nargs="?")
    set_p.add_argument("value", nargs="?")

    get_p = sub.add_parser("get", help="Retrieve credential")
    get_p.add_argument("key", nargs="?")

    sub.add_parser("list", help="List all credential keys")

    del_p = sub.add_parser("delete", aliases=["del"], help="Delete credential")
    del_p.add_argument("key", nargs="?")

    check_p = sub.add_parser("check", help="Check that a JSON configuration's placeholders are available")
    check_p.add_argument("config", type=str)

    legacy_p = sub.add_parser("legacy", help="Service/username record store")
    legacy_sub = legacy_p.add_subparsers(dest="legacy_command")
    legacy_sub.add_parser("init", help="Provision the record store key")
    for name in ("add", "get", "delete"):
        p = legacy_sub.add_parser(name)
        p.add_argument("-s", "--service", required=True)
        p.add_argument("-u", "--username", required=True)
        if name == "add":
            p.add_argument("-p", "--password", help="Prompted (hidden) when omitted")
    legacy_sub.add_parser("list")
    legacy_sub.add_parser("clear")
    legacy_sub.add_parser("migrate", help="Copy records into the vault as service/username")

    serve_p = sub.add_parser("serve", help="Start the local HTTP service")
    serve_p.add_argument("--host", default=None, help="Bind address")
    serve_p.add_argument("--port", type=int, default=None, help="Port")
    return parser


class _Context:
    def __init__(self, settings: Settings, console: SecretInput):
        self.settings = settings
        self.console = console
        providers = build_providers(settings, prompt=console.prompt_hidden, on_status=_err)
        self.vault = CredentialVault(settings.vault_path, providers["vault"])
        self.legacy = PasswordStore(settings.legacy_path, providers["legacy"])


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings()
    except SettingsError as exc:
        _err(f"Error: invalid configuration: {_settings_problems(exc)}")
        return 1
    if args.home:
        settings = settings.model_copy(update={"home": Path(args.home).expanduser()})
    swap_settings(settings)
    configure_logging(settings.log_level)

    if not args.command:
        parser.print_help(sys.stderr)
        return 1

    ctx = _Context(settings, SecretInput())
    try:
        if args.command == "serve":
            return _cmd_serve(ctx, args)
        return asyncio.run(_dispatch(ctx, args))
    except VaultError as exc:
        _err(f"Error: {exc}")
        return 1
    except (KeyboardInterrupt, EOFError):
        _err("Cancelled.")
        return 1


async def _dispatch(ctx: _Context, args: argparse.Namespace) -> int:
    if args.command == "init":
        return await _cmd_init(ctx, args)
    if args.command == "set":
        return await _cmd_set(ctx, args)
    if args.command == "get":
        return await _cmd_get(ctx, args)
    if args.command == "list":
        return await _cmd_list(ctx)
    if args.command in ("delete", "del"):
        return await _cmd_delete(ctx, args)
    if args.command == "check":
        return await _cmd_check(ctx, args)
    if args.command == "legacy":
        return await _cmd_legacy(ctx, args)
    return 1


async def _cmd_init(ctx: _Context, args: argparse.Namespace) -> int:
    overwrite = False
    if ctx.vault.exists():
        _err(f"Vault already exists at: {ctx.vault.path}")
        if not args.force:
            answer = ctx.console.prompt("Overwrite? (yes/no): ")
            if answer.strip().lower() != "yes":
                _err("Cancelled.")
                return 1
        overwrite = True

    _err("Initialize Secure Vault")
    password1 = ctx.console.prompt_hidden("Enter master password: ")
    password2 = ctx.console.prompt_hidden("Confirm master password: ")
    if password1 != password2:
        _err("Error: Passwords do not match")
        return 1

    _err("Storing master password in system keychain...")
    stored = await ctx.vault.initialize(password1, overwrite=overwrite)
    if stored:
        _err("Master password stored in keychain")
    else:
        _err("Could not store master password in keychain")
        _err("    You will need to enter it (or set VAULT_MASTER_PASSWORD) each time")
    _err("Vault initialized successfully")
    _err(f"Location: {ctx.vault.path}")
    return 0


async def _cmd_set(ctx: _Context, args: argparse.Namespace) -> int:
    async with ctx.vault.session():
        key = args.key or ctx.console.prompt("Enter credential name (e.g., gmail_password): ")
        value = args.value
        if value is None:
            value = ctx.console.prompt_hidden(f'Enter value for "{key}": ')
        await ctx.vault.set_credential(key, value)
    _err(f"Stored: {key.strip()}")
    return 0


async def _cmd_get(ctx: _Context, args: argparse.Namespace) -> int:
    key = args.key or ctx.console.prompt("Enter credential name: ")
    value = await ctx.vault.get_credential(key)
    sys.stdout.write(value)
    if sys.stdout.isatty():
        sys.stdout.write("\n")
    sys.stdout.flush()
    return 0


async def _cmd_list(ctx: _Context) -> int:
    names = await ctx.vault.list_credentials()
    if not names:
        _err("Vault is empty")
        return 0
    _err("Stored credentials:")
    for name in names:
        print(name)
    return 0


async def _cmd_delete(ctx: _Context, args: argparse.Namespace) -> int:
    key = args.key or ctx.console.prompt("Enter credential name to delete: ")
    await ctx.vault.delete_credential(key)
    _err(f"Deleted: {key}")
    return 0


async def _cmd_check(ctx: _Context, args: argparse.Namespace) -> int:
    try:
        config = json.loads(Path(args.config).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        _err(f"Error: cannot read configuration {args.config}: {exc}")
        return 1

    client = VaultClient(ctx.vault)
    placeholders = sorted((await client.extract_placeholders(config)).unwrap())
    for identifier in placeholders:
        print(identifier)

    missing = (await client.validate_credentials(config)).unwrap()

    if missing:
        _err("Missing credentials:\n  " + "\n  ".join(missing))
        _err("Add them with: credvault set <credential_name>")
        return 1
    _err(f"All {len(placeholders)} placeholders available")
    return 0


async def _cmd_legacy(ctx: _Context, args: argparse.Namespace) -> int:
    store = ctx.legacy
    cmd = args.legacy_command
    if cmd == "init":
        await store.init()
        _err("Record store initialized. Master key stored in keychain.")
        return 0
    if cmd == "add":
        password = args.password
        if password is None:
            password = ctx.console.prompt_hidden("Password: ")
        await store.add_or_update(args.service, args.username, password)
        _err(f"Stored: {args.service}/{args.username}")
        return 0
    if cmd == "get":
        sys.stdout.write(await store.get(args.service, args.username))
        if sys.stdout.isatty():
            sys.stdout.write("\n")
        return 0
    if cmd == "list":
        entries = store.list()
        if not entries:
            _err("No credentials stored")
            return 0
        for entry in entries:
            print(f"{entry.service}\t{entry.username}\t{entry.created_at}\t{entry.last_modified}")
        return 0
    if cmd == "delete":
        store.delete(args.service, args.username)
        _err(f"Deleted: {args.service}/{args.username}")
        return 0
    if cmd == "clear":
        store.clear()
        _err("Record store cleared")
        return 0
    if cmd == "migrate":
        async with ctx.vault.session():
            count = await store.migrate_to(ctx.vault)
        _err(f"Migrated {count} credentials into {ctx.vault.path}")
        return 0
    _err("Usage: credvault legacy {init,add,get,list,delete,clear,migrate}")
    return 1


def _cmd_serve(ctx: _Context, args: argparse.Namespace) -> int:
    import uvicorn

    from credvault.main import app

    host = args.host or ctx.settings.host
    port = args.port or ctx.settings.port
    _err(f"Starting credvault on http://{host}:{port}")
    _err(f"Vault: {ctx.settings.vault_path}")
    uvicorn.run(app, host=host, port=port, reload=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
