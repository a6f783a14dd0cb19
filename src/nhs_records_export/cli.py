from __future__ import annotations

import argparse
import logging
import os
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from .config import load_config
from .logging_config import DEFAULT_LOG_FILE, configure_logging
from .onepassword import MissingCredentialsError, SecretManagerError, resolve_credentials
from .portal.client import LoginFailedError, LoginFormNotFoundError, NhsAppClient, TooManyMfaAttemptsError
from .portal.mfa import MfaInputUnavailableError, MfaTimeoutError
from .rate_limit import LOCK_FILENAME, OtpRateLimitError, RateLimitLockedError, RateLimitLockFile
from .sections import ALL_SECTIONS, parse_sections_arg, select_sections
from .setup_wizard import run_setup
from .state import HISTORY_FILENAME, DownloadHistory
from .util.debug_bundle import create_debug_bundle


logger = logging.getLogger("nhs_records_export")

# Login failures the user can act on; reported without a traceback.
_LOGIN_ERRORS = (
    LoginFailedError,
    LoginFormNotFoundError,
    TooManyMfaAttemptsError,
    MfaTimeoutError,
    MfaInputUnavailableError,
    OtpRateLimitError,
)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="nhs_records_export",
        description="Download your GP health record (documents, consultations, test results) from the NHS App.",
    )
    p.add_argument(
        "--env-file",
        default=".env",
        help="Path to a dotenv file (default: .env). If missing, env vars must already be set.",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    download = sub.add_parser("download", help="Log in to the NHS App and download your GP health record")
    download.add_argument(
        "-s",
        "--sections",
        default="",
        help=(
            "Comma-separated list of sections to download (default: all). "
            f"Available: {', '.join(s.key for s in ALL_SECTIONS)} (also: docs, consult, test)."
        ),
    )
    download.add_argument("-v", "--verbose", action="store_true", help="Verbose (DEBUG) logging")
    download.add_argument(
        "--skip-details",
        action="store_true",
        help="List test results without opening each one (much faster, but no result values).",
    )
    download.add_argument("--test-login", action="store_true", help="Only test the login flow, then stop.")
    download.add_argument("--config", default="config.yaml", help="Path to YAML config (default: config.yaml)")
    download.add_argument(
        "--download-dir",
        default="",
        help="Where to save records (default: NHS_DOWNLOAD_DIR or ./nhs_downloads).",
    )
    download.add_argument("--headful", action="store_true", help="Force a visible browser even if HEADLESS=true")
    download.add_argument("--slowmo-ms", type=int, default=0, help="Playwright slow motion in milliseconds (debug).")
    download.add_argument("--step-debug", action="store_true", help="Save step-by-step screenshots under data/debug/.")

    setup = sub.add_parser("setup", help="Create a .env file with your credentials source and NHS number")
    setup.add_argument(
        "--gitignore",
        default="",
        help="Path to the .gitignore that should list the env file (default: next to the env file).",
    )

    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    env_path = Path(args.env_file)

    if args.cmd == "setup":
        configure_logging(level=os.getenv("LOG_LEVEL", "INFO"), file_path=None)
        run_setup(env_path=env_path, gitignore_path=Path(args.gitignore) if args.gitignore else None)
        print("\nSetup complete. Run `nhs_records_export download` to fetch your records.")
        return 0

    if env_path.exists():
        load_dotenv(env_path)

    # Default logging: can be overridden once config is loaded.
    configure_logging(level=os.getenv("LOG_LEVEL", "INFO"), file_path=os.getenv("LOG_FILE", DEFAULT_LOG_FILE))

    if args.cmd == "download":
        return _download(args)

    return 2


def _download(args: argparse.Namespace) -> int:
    try:
        cfg = load_config(args.config)
    except (ValidationError, ValueError) as e:
        raise SystemExit(f"Invalid configuration: {e}") from e

    configure_logging(level="DEBUG" if args.verbose else cfg.logging.level, file_path=cfg.logging.file_path)

    sections = select_sections(parse_sections_arg(args.sections))
    if not sections:
        raise SystemExit(
            f"No matching sections found for: {args.sections}. "
            f"Available: {', '.join(s.key for s in ALL_SECTIONS)}"
        )

    download_dir = Path(args.download_dir or cfg.output.download_dir)
    download_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Saving records to %s", download_dir.resolve())

    lock = RateLimitLockFile(download_dir / LOCK_FILENAME)
    try:
        lock.check()
    except RateLimitLockedError as e:
        raise SystemExit(str(e)) from e

    try:
        creds = resolve_credentials(cfg)
    except (MissingCredentialsError, SecretManagerError) as e:
        raise SystemExit(str(e)) from e

    if not cfg.nhs.nhs_number:
        logger.warning("NHS_NUMBER is not set; login and GP record checks can't confirm the account.")

    history = None if args.test_login else DownloadHistory(download_dir / HISTORY_FILENAME)
    client = NhsAppClient(
        creds=creds,
        download_dir=download_dir,
        nhs_number=cfg.nhs.nhs_number,
        rate_limit_lock=lock,
    )

    t0 = time.time()
    try:
        result = client.run(
            sections=sections,
            history=history,
            headless=bool(cfg.browser.headless and not args.headful),
            slow_mo_ms=args.slowmo_ms,
            test_login=args.test_login,
            skip_details=args.skip_details,
            debug_dir=cfg.output.debug_dir,
            step_log=args.verbose,
            step_debug=args.step_debug,
        )
    except Exception as e:
        # Auto-bundle debug artifacts + log for easy sharing. Never includes downloaded records.
        try:
            bundle = create_debug_bundle(
                debug_dir=cfg.output.debug_dir,
                log_file=cfg.logging.file_path or DEFAULT_LOG_FILE,
                out_dir=str(Path(cfg.output.debug_dir).parent),
                label="download",
            )
            logger.error("Wrote debug bundle: %s", bundle)
        except OSError:
            logger.debug("Failed to create debug bundle.", exc_info=True)
        if isinstance(e, _LOGIN_ERRORS):
            logger.error("%s", e)
            return 1
        raise

    if args.test_login:
        logger.info("Login test finished (seconds=%.2f)", time.time() - t0)
        return 0

    logger.info(
        "Finished (seconds=%.2f): %d documents downloaded, %d already downloaded, %d skipped, "
        "%d consultations, %d test results",
        time.time() - t0,
        result.documents_downloaded,
        result.documents_already_downloaded,
        len(result.skipped_documents),
        result.consultations,
        result.test_results,
    )
    if result.sections_failed:
        logger.error("Sections that could not be processed: %s", ", ".join(result.sections_failed))
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
