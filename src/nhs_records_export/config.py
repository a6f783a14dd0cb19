from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal
from typing import Union

import yaml
from pydantic import BaseModel, Field, field_validator

from .logging_config import DEFAULT_LOG_FILE
from .util.nhs_number import format_nhs_number


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _default_config_from_env() -> dict:
    """
    Env-only config so most users only need the `.env` written by `nhs_records_export setup`.

    YAML remains an optional override.
    """
    return {
        "nhs": {
            "email": os.getenv("NHS_EMAIL", ""),
            "password": os.getenv("NHS_PASSWORD", ""),
            "nhs_number": os.getenv("NHS_NUMBER", ""),
        },
        "onepassword": {
            "mode": (os.getenv("USE_ONEPASSWORD", "") or "auto").strip().lower(),
            "account": os.getenv("ONEPASSWORD_ACCOUNT", ""),
            "item": os.getenv("ONEPASSWORD_NHS_ITEM", "") or "NHS Login",
        },
        "output": {
            "download_dir": os.getenv("NHS_DOWNLOAD_DIR", "nhs_downloads"),
            "debug_dir": os.getenv("NHS_DEBUG_DIR", "data/debug"),
        },
        "browser": {
            "headless": _env_bool("HEADLESS", default=False),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", DEFAULT_LOG_FILE),
        },
    }


class NhsConfig(BaseModel):
    """
    NHS login credentials (optional when 1Password supplies them) and the NHS number.

    The NHS number is only used to confirm we landed on the right account after login.
    """

    email: str = ""
    password: str = Field(default="", repr=False)
    nhs_number: str = ""

    @field_validator("nhs_number")
    @classmethod
    def _format_nhs_number(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            return ""
        return format_nhs_number(v)


class OnePasswordConfig(BaseModel):
    # "auto": use the `op` CLI when it is installed, otherwise fall back to NHS_EMAIL/NHS_PASSWORD.
    mode: Literal["auto", "on", "off"] = "auto"
    account: str = ""
    # Item name, UUID, or an `op://vault/item/field` secret reference.
    item: str = "NHS Login"


class OutputConfig(BaseModel):
    download_dir: str = "nhs_downloads"
    debug_dir: str = "data/debug"


class BrowserConfig(BaseModel):
    # Headful by default: the user may have to cancel Chrome's passkey popup by hand.
    headless: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = DEFAULT_LOG_FILE


class AppConfig(BaseModel):
    nhs: NhsConfig = NhsConfig()
    onepassword: OnePasswordConfig = OnePasswordConfig()
    output: OutputConfig = OutputConfig()
    browser: BrowserConfig = BrowserConfig()
    logging: LoggingConfig = LoggingConfig()


def load_config(path: Union[str, Path]) -> AppConfig:
    p = Path(path)
    raw: dict = {}
    if p.exists():
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    return AppConfig.model_validate(merged)
