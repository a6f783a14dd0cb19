from __future__ import annotations

import json
import logging
import re
import subprocess
from typing import Any, Callable, Optional

from .config import AppConfig
from .models import Credentials


logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]


class SecretManagerError(RuntimeError):
    """
    Raised when the 1Password CLI is unavailable, signed out, or the NHS login item can't be read.
    """


class MissingCredentialsError(RuntimeError):
    pass


def _account_args(account: str) -> list[str]:
    account = (account or "").strip()
    return ["--account", account] if account else []


def _op(args: list[str], *, runner: Runner) -> subprocess.CompletedProcess:
    try:
        return runner(["op", *args], capture_output=True, text=True, check=False)
    except OSError as e:
        raise SecretManagerError(
            "1Password CLI (`op`) not found. Install it (https://developer.1password.com/docs/cli/) "
            "or set USE_ONEPASSWORD=off and use NHS_EMAIL / NHS_PASSWORD."
        ) from e


def onepassword_available(*, runner: Runner = subprocess.run) -> bool:
    try:
        proc = _op(["--version"], runner=runner)
    except SecretManagerError:
        return False
    return proc.returncode == 0


def ensure_signed_in(account: str = "", *, runner: Runner = subprocess.run) -> None:
    proc = _op(["whoami", *_account_args(account)], runner=runner)
    if proc.returncode == 0:
        return
    signin = "eval $(op signin" + (f" --account {account}" if account else "") + ")"
    raise SecretManagerError(
        "1Password CLI is not signed in. Run this in your terminal, then re-run:\n\n"
        f"   {signin}\n\n"
        "1Password CLI sessions expire after 30 minutes of inactivity."
    )


def list_accounts(*, runner: Runner = subprocess.run) -> list[dict[str, Any]]:
    proc = _op(["account", "list", "--format=json"], runner=runner)
    if proc.returncode != 0:
        return []
    try:
        data = json.loads(proc.stdout or "[]")
    except ValueError:
        return []
    return [a for a in data if isinstance(a, dict)] if isinstance(data, list) else []


def get_item(item_ref: str, account: str = "", *, runner: Runner = subprocess.run) -> dict[str, Any]:
    proc = _op(["item", "get", item_ref, "--format=json", *_account_args(account)], runner=runner)
    if proc.returncode != 0:
        raise SecretManagerError(
            f"Error fetching {item_ref!r} from 1Password: {(proc.stderr or '').strip()}. "
            f"Make sure you have an item named {item_ref!r} in 1Password."
        )
    return json.loads(proc.stdout)


def extract_credentials_from_item(item: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    """
    Pick the email + password out of an `op item get --format=json` payload.

    Login items vary in how they label fields, so try, in order:
    - a value containing "@" is the email
    - a CONCEALED field (or one labelled "password") is the password
    - labels like "username"/"email"
    - the USERNAME/PASSWORD field purposes
    """
    email: Optional[str] = None
    password: Optional[str] = None
    fields = [f for f in (item.get("fields") or []) if isinstance(f, dict)]

    for field in fields:
        value = field.get("value")
        label = str(field.get("label") or "").lower()
        if value and "@" in str(value):
            email = str(value)
        elif field.get("type") == "CONCEALED" or label == "password":
            password = value
        elif re.search(r"username|email|e-mail", label):
            email = email or value

    if not email:
        email = next((f.get("value") for f in fields if f.get("purpose") == "USERNAME"), None)
    if not password:
        password = next((f.get("value") for f in fields if f.get("purpose") == "PASSWORD"), None)
    return email, password


def _read_secret_reference(item_ref: str, account: str, *, runner: Runner) -> tuple[Optional[str], Optional[str]]:
    # op://vault/item/field -> op://vault/item/{username,email,password}
    def _ref(field: str) -> str:
        return re.sub(r"/[^/]+$", f"/{field}", item_ref)

    email: Optional[str] = None
    for field in ("username", "email"):
        proc = _op(["read", _ref(field), *_account_args(account)], runner=runner)
        if proc.returncode == 0:
            email = (proc.stdout or "").strip()
            break

    password: Optional[str] = None
    proc = _op(["read", _ref("password"), *_account_args(account)], runner=runner)
    if proc.returncode == 0:
        password = (proc.stdout or "").strip()
    return email, password


def fetch_onepassword_credentials(item_ref: str, account: str = "", *, runner: Runner = subprocess.run) -> Credentials:
    logger.info("Fetching credentials from 1Password...")
    ensure_signed_in(account, runner=runner)

    if item_ref.startswith("op://"):
        email, password = _read_secret_reference(item_ref, account, runner=runner)
    else:
        email, password = extract_credentials_from_item(get_item(item_ref, account, runner=runner))

    if not email or not password:
        raise SecretManagerError(f"Could not extract email and password from 1Password item {item_ref!r}.")
    return Credentials(email=email, password=password)


def resolve_credentials(cfg: AppConfig, *, runner: Runner = subprocess.run) -> Credentials:
    """
    Credentials from 1Password when enabled/available, otherwise from NHS_EMAIL / NHS_PASSWORD.
    """
    op = cfg.onepassword
    use_op = op.mode == "on" or (op.mode == "auto" and onepassword_available(runner=runner))

    if use_op:
        logger.info("1Password CLI detected")
        return fetch_onepassword_credentials(op.item, op.account, runner=runner)

    if op.mode == "auto":
        logger.info("1Password CLI not found. Using environment variables.")

    if not cfg.nhs.email or not cfg.nhs.password:
        raise MissingCredentialsError(
            "Missing NHS credentials. Set NHS_EMAIL + NHS_PASSWORD in your .env "
            "(or run `nhs_records_export setup`)."
        )
    return Credentials(email=cfg.nhs.email, password=cfg.nhs.password)
