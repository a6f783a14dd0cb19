from __future__ import annotations

import json
import subprocess
from typing import Optional

import pytest

from nhs_records_export.config import AppConfig
from nhs_records_export.onepassword import (
    MissingCredentialsError,
    SecretManagerError,
    extract_credentials_from_item,
    fetch_onepassword_credentials,
    list_accounts,
    onepassword_available,
    resolve_credentials,
)


LOGIN_ITEM = {
    "id": "abc123",
    "title": "NHS",
    "fields": [
        {"id": "username", "type": "STRING", "purpose": "USERNAME", "label": "username", "value": "me@example.com"},
        {"id": "password", "type": "CONCEALED", "purpose": "PASSWORD", "label": "password", "value": "s3cret"},
        {"id": "notesPlain", "type": "STRING", "purpose": "NOTES", "label": "notesPlain"},
    ],
}


class FakeOp:
    """
    Stands in for `subprocess.run(["op", ...])`: replies are keyed by the op subcommand.
    """

    def __init__(self, replies: dict[str, tuple[int, str]], *, reads: Optional[dict[str, str]] = None) -> None:
        self.replies = replies
        self.reads = reads or {}
        self.calls: list[list[str]] = []

    def __call__(self, args, **kwargs) -> subprocess.CompletedProcess:
        self.calls.append(list(args))
        if args[1] == "read":
            value = self.reads.get(args[2])
            rc, out = (0, value) if value is not None else (1, "")
        else:
            rc, out = self.replies.get(args[1], (1, ""))
        return subprocess.CompletedProcess(args, rc, stdout=out, stderr="" if rc == 0 else "op error")


def _missing_op(args, **kwargs) -> subprocess.CompletedProcess:
    raise FileNotFoundError("op")


def test_extract_credentials_from_login_item() -> None:
    assert extract_credentials_from_item(LOGIN_ITEM) == ("me@example.com", "s3cret")


def test_extract_credentials_by_label() -> None:
    item = {"fields": [{"label": "Email", "value": "nhs-user"}, {"label": "Password", "value": "pw"}]}
    assert extract_credentials_from_item(item) == ("nhs-user", "pw")


def test_extract_credentials_by_purpose() -> None:
    item = {
        "fields": [
            {"label": "login", "purpose": "USERNAME", "value": "user1"},
            {"label": "secret", "purpose": "PASSWORD", "type": "STRING", "value": "pw"},
        ]
    }
    assert extract_credentials_from_item(item) == ("user1", "pw")


def test_fetch_credentials_from_item() -> None:
    op = FakeOp({"whoami": (0, "{}"), "item": (0, json.dumps(LOGIN_ITEM))})
    creds = fetch_onepassword_credentials("NHS", "my.1password.com", runner=op)

    assert creds.email == "me@example.com"
    assert creds.password == "s3cret"
    assert op.calls[0] == ["op", "whoami", "--account", "my.1password.com"]
    assert op.calls[1] == ["op", "item", "get", "NHS", "--format=json", "--account", "my.1password.com"]


def test_fetch_credentials_from_secret_reference() -> None:
    op = FakeOp(
        {"whoami": (0, "{}")},
        reads={"op://Personal/NHS/email": "me@example.com\n", "op://Personal/NHS/password": "s3cret\n"},
    )
    creds = fetch_onepassword_credentials("op://Personal/NHS/password", runner=op)
    assert (creds.email, creds.password) == ("me@example.com", "s3cret")
    # username is tried before email
    assert ["op", "read", "op://Personal/NHS/username"] in op.calls


def test_fetch_credentials_requires_sign_in() -> None:
    op = FakeOp({"whoami": (1, "")})
    with pytest.raises(SecretManagerError, match="op signin"):
        fetch_onepassword_credentials("NHS", runner=op)


def test_fetch_credentials_unknown_item() -> None:
    op = FakeOp({"whoami": (0, "{}"), "item": (1, "")})
    with pytest.raises(SecretManagerError, match="NHS"):
        fetch_onepassword_credentials("NHS", runner=op)


def test_onepassword_available() -> None:
    assert onepassword_available(runner=FakeOp({"--version": (0, "2.30.0")}))
    assert not onepassword_available(runner=_missing_op)


def test_list_accounts() -> None:
    accounts = [{"url": "my.1password.com", "email": "me@example.com"}]
    assert list_accounts(runner=FakeOp({"account": (0, json.dumps(accounts))})) == accounts
    assert list_accounts(runner=FakeOp({"account": (0, "not json")})) == []


def test_resolve_credentials_falls_back_to_env_values() -> None:
    cfg = AppConfig.model_validate({"nhs": {"email": "me@example.com", "password": "pw"}})
    creds = resolve_credentials(cfg, runner=_missing_op)
    assert (creds.email, creds.password) == ("me@example.com", "pw")
    assert "pw" not in repr(creds)


def test_resolve_credentials_uses_onepassword_when_available() -> None:
    cfg = AppConfig.model_validate({"onepassword": {"item": "NHS"}})
    op = FakeOp({"--version": (0, "2.30.0"), "whoami": (0, "{}"), "item": (0, json.dumps(LOGIN_ITEM))})
    assert resolve_credentials(cfg, runner=op).email == "me@example.com"


def test_resolve_credentials_missing() -> None:
    cfg = AppConfig.model_validate({"onepassword": {"mode": "off"}})
    with pytest.raises(MissingCredentialsError):
        resolve_credentials(cfg, runner=_missing_op)


def test_resolve_credentials_forced_onepassword_without_cli() -> None:
    cfg = AppConfig.model_validate({"onepassword": {"mode": "on"}})
    with pytest.raises(SecretManagerError, match="not found"):
        resolve_credentials(cfg, runner=_missing_op)
