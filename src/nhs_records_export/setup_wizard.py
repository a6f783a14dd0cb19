from __future__ import annotations

import getpass
import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional

from .onepassword import (
    Runner,
    SecretManagerError,
    ensure_signed_in,
    extract_credentials_from_item,
    get_item,
    list_accounts,
    onepassword_available,
)
from .util.nhs_number import format_nhs_number, nhs_number_digits


logger = logging.getLogger(__name__)

InputFn = Callable[[str], str]


def _prompt_yes_no(prompt: str, *, input_fn: InputFn) -> bool:
    return input_fn(prompt).strip().lower() in {"y", "yes"}


def _prompt_choice(prompt: str, *, min_value: int, max_value: int, input_fn: InputFn) -> int:
    while True:
        raw = input_fn(prompt).strip()
        if not raw:
            continue
        if raw.lower() in {"q", "quit", "exit"}:
            raise SystemExit("Aborted.")
        if raw.isdigit():
            n = int(raw)
            if min_value <= n <= max_value:
                return n
        print(f"Enter a number from {min_value} to {max_value} (or 'q' to abort).")


def prompt_nhs_number(*, input_fn: InputFn = input) -> str:
    while True:
        raw = input_fn("\nEnter your NHS number: ")
        digits = nhs_number_digits(raw)
        if len(digits) != 10:
            print(f"NHS number must be exactly 10 digits (you entered {len(digits)})")
            continue
        formatted = format_nhs_number(digits)
        print(f"NHS number formatted as: {formatted}")
        return formatted


def _onepassword_lines(*, input_fn: InputFn, runner: Runner) -> list[str]:
    if not onepassword_available(runner=runner):
        raise SystemExit(
            "1Password CLI not found. Install it first (https://developer.1password.com/docs/cli/), "
            "or re-run setup and enter your credentials manually."
        )

    lines: list[str] = []
    account = ""
    accounts = list_accounts(runner=runner)
    if len(accounts) > 1:
        print("\nMultiple 1Password accounts found:")
        for i, acc in enumerate(accounts, start=1):
            print(f"{i}. {acc.get('email', '')} ({acc.get('url', '')})")
        choice = _prompt_choice(
            f"\nSelect account number (1-{len(accounts)}): ",
            min_value=1,
            max_value=len(accounts),
            input_fn=input_fn,
        )
        account = str(accounts[choice - 1].get("url") or "")
        print(f"Selected account: {accounts[choice - 1].get('email', '')}")
    elif len(accounts) == 1:
        account = str(accounts[0].get("url") or "")

    if account:
        lines += ["# 1Password account", f"ONEPASSWORD_ACCOUNT={account}"]

    try:
        ensure_signed_in(account, runner=runner)
        item_name = input_fn("\nEnter the name of your NHS login item in 1Password (e.g. 'NHS'): ").strip()
        item = get_item(item_name, account, runner=runner)
    except SecretManagerError as e:
        raise SystemExit(str(e)) from e

    title = item.get("title") or item_name
    print(f"\nFound 1Password item: {title}")
    print(f"   ID: {item.get('id', '')}")
    email, password = extract_credentials_from_item(item)
    print(f"   Email: {email}" if email else "   Warning: could not find an email field")
    print("   Password: [hidden]" if password else "   Warning: could not find a password field")

    # Item UUIDs survive renames.
    lines += [
        "# 1Password item",
        f"# item name: {title}",
        f"ONEPASSWORD_NHS_ITEM={item.get('id') or item_name}",
        "USE_ONEPASSWORD=on",
    ]
    return lines


def _manual_lines(*, input_fn: InputFn, getpass_fn: Callable[[str], str]) -> list[str]:
    email = input_fn("\nEnter your NHS email address: ").strip()
    password = getpass_fn("Enter your NHS password: ")
    return [
        "# NHS login credentials",
        f"NHS_EMAIL={email}",
        f"NHS_PASSWORD={password}",
        "USE_ONEPASSWORD=off",
    ]


def ensure_gitignored(gitignore: Path, entry: str = ".env") -> bool:
    """
    Append `entry` to `.gitignore` unless it is already listed. Returns True if the file changed.
    """
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    if entry in existing.splitlines():
        return False
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    with gitignore.open("a", encoding="utf-8") as f:
        f.write(f"{prefix}{entry}\n")
    return True


def run_setup(
    *,
    env_path: Path = Path(".env"),
    gitignore_path: Optional[Path] = None,
    input_fn: InputFn = input,
    getpass_fn: Callable[[str], str] = getpass.getpass,
    runner: Runner = subprocess.run,
) -> Path:
    """
    Interactive `.env` writer: 1Password item or plain credentials, plus the NHS number.
    """
    print("NHS Records Export - Setup")
    print("=" * 50)

    if env_path.exists() and not _prompt_yes_no(f"{env_path} already exists. Overwrite it? (y/n): ", input_fn=input_fn):
        raise SystemExit("Aborted.")

    if _prompt_yes_no("Are you using 1Password CLI? (y/n): ", input_fn=input_fn):
        lines = _onepassword_lines(input_fn=input_fn, runner=runner)
    else:
        lines = _manual_lines(input_fn=input_fn, getpass_fn=getpass_fn)

    lines.append(f"NHS_NUMBER={prompt_nhs_number(input_fn=input_fn)}")

    env_path.parent.mkdir(parents=True, exist_ok=True)
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    print(f"\nCreated {env_path}")
    logger.debug("Wrote %d lines to %s", len(lines), env_path)

    gitignore = gitignore_path or env_path.parent / ".gitignore"
    if ensure_gitignored(gitignore, env_path.name):
        print(f"Added {env_path.name} to {gitignore}")
    return env_path
