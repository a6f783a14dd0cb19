from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright

from ..export import save_consultations, save_skipped_report, save_test_results
from ..models import Credentials, SkippedDocument
from ..rate_limit import RateLimitLockFile, wait_out_rate_limit
from ..sections import CONSULTATIONS, DOCUMENTS, TEST_RESULTS, Section
from ..state import DownloadHistory
from .consultations import ConsultationsScraper
from .documents import DocumentsScraper
from .dom import click, first_visible, has_element, page_text, wait_for_first_visible
from .mfa import prompt_for_otp
from .parsing import login_markers_present, nhs_number_visible
from .selectors import PortalSelectors
from .test_results import TestResultsScraper


logger = logging.getLogger(__name__)

# Chromium must not offer passkeys: NHS login then falls back to its "log in with password" page.
BROWSER_ARGS: tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--disable-features=WebAuthn",
    "--disable-save-password-bubble",
)

EMAIL_FIELD_TIMEOUT_S = 60
PASSWORD_FIELD_TIMEOUT_S = 30
PASSWORD_PAGE_ATTEMPTS = 5
LANDING_ATTEMPTS = 3


class LoginFormNotFoundError(RuntimeError):
    """
    Raised when we cannot locate an NHS login form field (email or password) within its wait ceiling.
    """


class LoginFailedError(RuntimeError):
    pass


class TooManyMfaAttemptsError(RuntimeError):
    pass


class GpRecordNavigationError(RuntimeError):
    pass


@dataclass
class RunResult:
    documents_downloaded: int = 0
    documents_already_downloaded: int = 0
    skipped_documents: list[SkippedDocument] = field(default_factory=list)
    consultations: int = 0
    test_results: int = 0
    sections_failed: list[str] = field(default_factory=list)


class NhsAppClient:
    """
    NHS App automation: nhs.uk -> NHS login -> NHS App -> GP health record.
    """

    def __init__(
        self,
        *,
        creds: Credentials,
        download_dir: Path,
        nhs_number: str = "",
        selectors: Optional[PortalSelectors] = None,
        rate_limit_lock: Optional[RateLimitLockFile] = None,
    ) -> None:
        self.creds = creds
        self.nhs_number = nhs_number
        self.download_dir = Path(download_dir)
        self.selectors = selectors or PortalSelectors()
        self.rate_limit_lock = rate_limit_lock or RateLimitLockFile(self.download_dir / ".otp_rate_limit_lock")

        # Step-by-step debug (screenshots), configured per `run()` call.
        self.debug_dir: str = "data/debug"
        self._step_log_enabled: bool = False
        self._step_debug_enabled: bool = False
        self._step_counter: int = 0

    def run(
        self,
        *,
        sections: list[Section],
        history: Optional[DownloadHistory] = None,
        headless: bool = False,
        slow_mo_ms: int = 0,
        test_login: bool = False,
        skip_details: bool = False,
        debug_dir: str = "data/debug",
        step_log: bool = False,
        step_debug: bool = False,
        mfa_code_provider: Optional[Callable[[], str]] = None,
    ) -> RunResult:
        """
        Log in, then export each of `sections` into `download_dir`.

        With `test_login`, stop after login (and wait for Enter before closing a visible browser).
        """
        self.debug_dir = debug_dir
        self._step_log_enabled = bool(step_log or step_debug)
        self._step_debug_enabled = bool(step_debug)
        self._step_counter = 0
        mfa_code_provider = mfa_code_provider or prompt_for_otp

        self.download_dir.mkdir(parents=True, exist_ok=True)
        result = RunResult()

        with sync_playwright() as p:
            # Prefer Playwright's bundled Chromium, but fall back to a system-installed browser if the
            # Playwright browser cache is empty.
            slow_mo = int(slow_mo_ms or 0)
            launch_kwargs = {"headless": headless, "slow_mo": slow_mo, "args": list(BROWSER_ARGS)}
            try:
                browser = p.chromium.launch(**launch_kwargs)
            except PlaywrightError as e:
                msg = str(e)
                if "Executable doesn't exist" not in msg:
                    raise

                logger.warning(
                    "Playwright Chromium executable missing; falling back to system browser channel. (%s)",
                    msg,
                )

                # Try Chrome first, then Edge.
                try:
                    browser = p.chromium.launch(channel="chrome", **launch_kwargs)
                except PlaywrightError:
                    browser = p.chromium.launch(channel="msedge", **launch_kwargs)
            try:
                # A fresh context is private (incognito-like): no saved passwords or passkeys.
                ctx = browser.new_context(accept_downloads=True, color_scheme="light")
                ctx.set_default_timeout(15_000)
                page = ctx.new_page()
                try:
                    self.step(page, name="start")
                    self.login(page, mfa_code_provider=mfa_code_provider)

                    if test_login:
                        logger.info("Login test completed successfully.")
                        if not headless and sys.stdin.isatty():
                            input("Press Enter to close the browser...")
                        return result

                    if not self.navigate_to_gp_record(page):
                        self.save_debug(page, name_prefix="gp_record_failed")
                        raise GpRecordNavigationError(
                            f"Failed to navigate to GP health record (url={page.url}). "
                            f"Check {self.debug_dir} for a screenshot."
                        )

                    self.download_records(page, sections=sections, history=history, skip_details=skip_details, result=result)
                    return result
                except Exception:
                    self.save_debug(page, name_prefix="run_failed")
                    raise
                finally:
                    ctx.close()
            finally:
                if history is not None and not test_login:
                    history.save()
                browser.close()

    # -------------------------------------------------------------------------------------------
    # Login
    # -------------------------------------------------------------------------------------------

    def login(self, page: Page, *, mfa_code_provider: Callable[[], str]) -> None:
        s = self.selectors
        logger.info("Starting NHS login (credentials stay on this machine).")

        page.goto(s.homepage_url, wait_until="domcontentloaded")
        page.wait_for_timeout(2_000)
        self._handle_cookie_consent(page)
        page.wait_for_timeout(1_000)

        my_account = first_visible(page, s.my_account_links)
        if my_account is not None:
            logger.info("Clicking 'My account'...")
            my_account.click()
            page.wait_for_timeout(2_000)
        else:
            logger.info("Could not find 'My account' link; trying the NHS login redirect.")
        self.step(page, name="my_account")

        try:
            page.locator(s.continue_to_login_button).first.wait_for(state="visible", timeout=PASSWORD_FIELD_TIMEOUT_S * 1000)
            logger.info("Clicking 'Continue to NHS login'...")
            page.locator(s.continue_to_login_button).first.click()
        except PlaywrightError:
            logger.info("Navigating directly to the NHS login redirect.")
            page.goto(s.auth_redirect_url, wait_until="domcontentloaded")
        page.wait_for_timeout(2_000)

        self._handle_cookie_consent(page)

        if "nhsapp.service.nhs.uk/login" in page.url:
            btn = wait_for_first_visible(page, s.app_login_continue_buttons, timeout_s=PASSWORD_FIELD_TIMEOUT_S)
            if btn is not None:
                logger.info("Clicking Continue on the NHS App login page...")
                btn.click()
                page.wait_for_timeout(1_000)
            else:
                logger.warning("Could not find Continue button on the NHS App login page.")
        self.step(page, name="login_start")

        self._enter_email(page)
        self._reach_password_page(page)

        if has_element(page, s.otp_inputs):
            self._handle_mfa(page, mfa_code_provider)
        else:
            logger.info("No MFA required, continuing...")

        self.verify_login(page)

    def _enter_email(self, page: Page) -> None:
        s = self.selectors
        logger.info("Waiting for the email entry page...")
        logger.warning(
            "If Chrome shows a passkey popup, please click 'Cancel' manually (waiting up to %d seconds).",
            EMAIL_FIELD_TIMEOUT_S,
        )

        email_field = wait_for_first_visible(page, s.email_inputs, timeout_s=EMAIL_FIELD_TIMEOUT_S)
        if email_field is None:
            self.save_debug(page, name_prefix="email_field_missing")
            raise LoginFormNotFoundError(
                f"Could not find the email field after {EMAIL_FIELD_TIMEOUT_S} seconds; "
                f"a passkey popup may still be blocking the page (url={page.url})."
            )

        logger.info("Entering email...")
        email_field.fill(self.creds.email)
        page.wait_for_timeout(2_000)

        btn = first_visible(page, s.email_submit_buttons, text_contains="continue")
        if btn is not None:
            btn.click()
        else:
            logger.warning("Could not find a Continue button after entering email.")
        page.wait_for_timeout(2_000)
        self.step(page, name="email_submitted")

    def _reach_password_page(self, page: Page) -> None:
        s = self.selectors
        page.wait_for_timeout(3_000)

        for attempt in range(1, PASSWORD_PAGE_ATTEMPTS + 1):
            logger.debug("Password page attempt %d (url=%s)", attempt, page.url)
            text = page_text(page)

            if "passkey-login-failed" in page.url or "There was a problem" in text or "What do you want to do?" in text:
                logger.info("Found passkey failure page, handling it...")
                self._handle_passkey_prompts(page)
                page.wait_for_timeout(2_000)

            if "log-in-password" in page.url or has_element(page, s.password_inputs):
                logger.info("Found password page.")
                self._enter_password(page)
                return

            if "enter-email" in page.url:
                btn = first_visible(page, "button", text_contains="continue")
                if btn is not None:
                    logger.info("Still on the email page; clicking Continue again...")
                    btn.click()

            page.wait_for_timeout(2_000)

        logger.warning("Failed to reach the password page after %d attempts (url=%s)", PASSWORD_PAGE_ATTEMPTS, page.url)
        self.save_debug(page, name_prefix="password_page_missing")

    def _handle_passkey_prompts(self, page: Page) -> None:
        s = self.selectors
        page.wait_for_timeout(1_000)
        text = page_text(page)

        if any(m in text for m in s.passkey_failure_markers):
            logger.info("Found passkey authentication page; selecting password login (url=%s)", page.url)
            page.wait_for_timeout(1_000)
            if not self._select_password_option(page):
                logger.error("Failed to select the 'password instead' option.")
            page.wait_for_timeout(500)

            btn = first_visible(page, s.passkey_continue_buttons)
            if btn is None:
                logger.error("Failed to find Continue on the passkey page.")
                return
            click(page, btn, settle_ms=1_000)
            return

        # Older passkey interstitials
        for label in s.passkey_dismiss_texts:
            for tag in ("button", "a"):
                el = first_visible(page, f'{tag}:has-text("{label}")')
                if el is not None:
                    logger.info("Dismissing passkey prompt (%s)...", label)
                    el.click()
                    page.wait_for_timeout(1_000)
                    return

    def _select_password_option(self, page: Page) -> bool:
        radio_id = self.selectors.passkey_password_radio_id
        attempts: tuple[tuple[str, Callable[[], None]], ...] = (
            ("id", lambda: click(page, page.locator(f"#{radio_id}").first)),
            ("label", lambda: click(page, page.locator(f'label[for="{radio_id}"]').first)),
            ("script", lambda: page.evaluate("id => document.getElementById(id).click()", radio_id)),
        )
        for how, fn in attempts:
            try:
                fn()
                logger.info("Selected password option by %s", how)
                return True
            except PlaywrightError as e:
                logger.debug("Could not select password option by %s: %s", how, e)
        return False

    def _enter_password(self, page: Page) -> None:
        s = self.selectors
        field_ = wait_for_first_visible(page, s.password_inputs, timeout_s=PASSWORD_FIELD_TIMEOUT_S)
        if field_ is None:
            self.save_debug(page, name_prefix="password_field_missing")
            raise LoginFormNotFoundError(f"Could not find the password field (url={page.url}).")

        logger.info("Entering password...")
        field_.fill(self.creds.password)

        submit = first_visible(page, s.password_submit_buttons)
        if submit is None:
            raise LoginFormNotFoundError(f"Could not find the password Continue button (url={page.url}).")
        submit.click()
        page.wait_for_timeout(2_000)
        self.step(page, name="password_submitted")

    def _handle_mfa(self, page: Page, mfa_code_provider: Callable[[], str]) -> None:
        s = self.selectors
        logger.warning("MFA code required!")
        self.step(page, name="mfa")
        code = mfa_code_provider()

        otp = first_visible(page, s.otp_inputs)
        if otp is None:
            raise LoginFormNotFoundError("Could not find the MFA input field.")
        otp.fill(code)
        logger.info("Entered MFA code.")

        submit = first_visible(page, s.otp_submit_buttons)
        if submit is None:
            raise LoginFormNotFoundError("Could not find the MFA Continue button.")
        submit.click()
        page.wait_for_timeout(3_000)

        self._raise_if_too_many_attempts(page)

    def _raise_if_too_many_attempts(self, page: Page) -> None:
        text = page_text(page)
        if "You cannot continue" in text and "too many times" in text:
            self.save_debug(page, name_prefix="too_many_mfa_attempts")
            raise TooManyMfaAttemptsError(
                "Too many security code attempts. This is an NHS security measure: wait up to 15 minutes "
                "before trying again (or log in with a passkey if you have one set up)."
            )

    def _looks_like_error_page(self, page: Page) -> bool:
        try:
            title = page.title()
        except PlaywrightError:
            title = ""
        return "/error" in page.url or "Something went wrong" in title

    def verify_login(self, page: Page) -> None:
        """
        Confirm we reached the NHS App after NHS login, clicking through the "Access your NHS services" page.

        Raises on the rate-limit, too-many-attempts and error pages; anything else that merely
        can't be confirmed is logged and the run continues.
        """
        s = self.selectors
        logger.info("Verifying login...")
        page.wait_for_timeout(3_000)

        if "otp-requests-exceeded" in page.url:
            self.save_debug(page, name_prefix="otp_rate_limit")
            wait_out_rate_limit(self.rate_limit_lock)

        self._raise_if_too_many_attempts(page)

        if self._looks_like_error_page(page):
            self.save_debug(page, name_prefix="login_error_page")
            raise LoginFailedError(
                "Login failed with an error page. This may be due to an expired MFA code or a session timeout. "
                "Please try again."
            )

        for attempt in range(1, LANDING_ATTEMPTS + 1):
            logger.debug("Login verification attempt %d (url=%s)", attempt, page.url)
            url = page.url

            if self._looks_like_error_page(page):
                self.save_debug(page, name_prefix="login_error_page")
                raise LoginFailedError(f"Login failed - reached error page (url={page.url}).")

            if s.access_services_text in page_text(page):
                logger.info("Found '%s' page", s.access_services_text)
                btn = first_visible(page, s.app_login_continue_buttons)
                if btn is not None:
                    btn.click()
                    page.wait_for_timeout(3_000)
                else:
                    logger.warning("Could not find Continue on the '%s' page.", s.access_services_text)

            page.wait_for_timeout(2_000)

            if "nhsapp.service.nhs.uk/patient" in url or "nhsapp.service.nhs.uk/home" in url:
                break

        if "assertedLoginIdentity" in page.url:
            logger.debug("Dropping auth parameters from the landing URL.")
            page.goto(s.patient_home_url, wait_until="domcontentloaded")
            page.wait_for_timeout(3_000)

        self.step(page, name="post_login")
        text = page_text(page)
        if login_markers_present(text, nhs_number=self.nhs_number, greetings=s.login_greetings):
            logger.info("Login successful (url=%s)", page.url)
            if nhs_number_visible(text, self.nhs_number):
                logger.info("Found NHS number %s on the page.", self.nhs_number)
        else:
            try:
                title = page.title()
            except PlaywrightError:
                title = ""
            logger.warning("Could not fully verify login (url=%s, title=%r); continuing anyway.", page.url, title)
            self.save_debug(page, name_prefix="login_unverified")

    def _handle_cookie_consent(self, page: Page) -> None:
        s = self.selectors
        btn = first_visible(page, s.cookie_accept_button)
        if btn is None:
            for text in s.cookie_accept_texts:
                btn = first_visible(page, f'button:has-text("{text}")')
                if btn is not None:
                    break
        if btn is None:
            return

        try:
            logger.info("Accepting cookies...")
            btn.click()
            page.wait_for_timeout(1_000)
        except PlaywrightError:
            logger.debug("Cookie banner click failed.", exc_info=True)

    # -------------------------------------------------------------------------------------------
    # GP health record
    # -------------------------------------------------------------------------------------------

    def navigate_to_gp_record(self, page: Page) -> bool:
        s = self.selectors
        logger.info("Navigating to GP health record...")
        page.wait_for_timeout(2_000)

        link = first_visible(page, s.gp_record_links)
        if link is None:
            logger.error("Could not find GP health record link (url=%s)", page.url)
            logger.debug("Page text sample: %s", page_text(page)[:500])
            return False
        link.click()
        page.wait_for_timeout(2_000)

        text = page_text(page)
        if "Important" in text and "Your record may contain sensitive information" in text:
            logger.info("Found GP record consent page.")
            btn = first_visible(page, s.gp_record_consent_continue)
            if btn is not None:
                btn.click()
                page.wait_for_timeout(2_000)
            else:
                logger.warning("Could not find Continue on the GP record consent page.")
            page.wait_for_timeout(2_000)

        self.step(page, name="gp_record")
        text = page_text(page)
        if not any(m in text for m in s.gp_record_markers):
            logger.warning("May not be on the GP health record page (url=%s)", page.url)
            return False

        logger.info("On GP health record page (url=%s)", page.url)
        if nhs_number_visible(text, self.nhs_number):
            logger.info("NHS number verified: %s", self.nhs_number)
        return True

    def _find_section_link(self, page: Page, section: Section):
        candidates = (
            ("data-purpose", f"li[data-purpose='{section.data_purpose}'] a"),
            ("href", f"a[href*='{section.href}']"),
            ("span text", f'a:has(span:has-text("{section.name}"))'),
            ("link text", f'a:has-text("{section.name}")'),
        )
        for how, selector in candidates:
            link = first_visible(page, selector)
            if link is not None:
                logger.debug("Found %s link by %s", section.name, how)
                return link

        available = [t.strip() for t in page.locator("li[data-purpose] a").all_inner_texts()]
        logger.error("Could not find %s link (url=%s); available links: %s", section.name, page.url, available)
        return None

    def download_records(
        self,
        page: Page,
        *,
        sections: list[Section],
        history: Optional[DownloadHistory],
        skip_details: bool,
        result: RunResult,
    ) -> None:
        logger.info("Will download: %s", ", ".join(sec.name for sec in sections))
        history = history if history is not None else DownloadHistory(self.download_dir / "download_history.json")

        for section in sections:
            logger.info("Processing: %s", section.name)
            try:
                link = self._find_section_link(page, section)
                if link is None:
                    result.sections_failed.append(section.name)
                    continue
                click(page, link, settle_ms=3_000)
                self.step(page, name=f"section_{section.key}")

                if section == DOCUMENTS:
                    outcome = DocumentsScraper(self, history=history).run(page)
                    result.documents_downloaded += outcome.downloaded
                    result.documents_already_downloaded += outcome.already_downloaded
                    result.skipped_documents.extend(outcome.skipped)
                    if outcome.skipped:
                        save_skipped_report(outcome.skipped, self.download_dir)
                elif section == CONSULTATIONS:
                    consultations = ConsultationsScraper(self).run(page)
                    result.consultations = len(consultations)
                    save_consultations(consultations, self.download_dir)
                elif section == TEST_RESULTS:
                    results = TestResultsScraper(self, skip_details=skip_details).run(page)
                    result.test_results = len(results)
                    save_test_results(results, self.download_dir)

                logger.info("Navigating back to GP health record...")
                # Test results may be several pages deep after year navigation.
                if section == TEST_RESULTS:
                    page.goto(self.selectors.gp_record_url, wait_until="domcontentloaded")
                else:
                    page.go_back()
                page.wait_for_timeout(3_000)
                if not any(m in page_text(page) for m in self.selectors.gp_record_markers):
                    # Paginated sections leave extra history entries behind.
                    page.goto(self.selectors.gp_record_url, wait_until="domcontentloaded")
                    page.wait_for_timeout(3_000)
            except (PlaywrightError, OSError) as e:
                logger.error("Error processing %s: %s", section.name, e)
                logger.debug("Section failure details", exc_info=True)
                self.save_debug(page, name_prefix=f"section_{section.key}_failed")
                result.sections_failed.append(section.name)

        logger.info("Finished processing all sections.")

    # -------------------------------------------------------------------------------------------
    # Debug helpers
    # -------------------------------------------------------------------------------------------

    def save_debug(self, page: Page, *, name_prefix: str) -> None:
        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(out_dir / f"{name_prefix}.png"), full_page=True)
            (out_dir / f"{name_prefix}.html").write_text(page.content(), encoding="utf-8")
            # Also save the rendered body text so page changes can be diagnosed without DOM tooling.
            (out_dir / f"{name_prefix}.txt").write_text(page_text(page), encoding="utf-8")
        except (PlaywrightError, OSError):
            logger.debug("Failed to save debug artifacts.", exc_info=True)

    def step(self, page: Page, *, name: str) -> None:
        """
        If enabled, log step-by-step progress and optionally save screenshots.
        """
        if not self._step_log_enabled and not self._step_debug_enabled:
            return

        self._step_counter += 1
        safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", name).strip("_")[:60] or "step"
        prefix = f"step_{self._step_counter:02d}_{safe}"
        logger.info("Step %02d %s (url=%s)", self._step_counter, name, page.url)

        if not self._step_debug_enabled:
            return

        try:
            out_dir = Path(self.debug_dir)
            out_dir.mkdir(parents=True, exist_ok=True)
            page.screenshot(path=str(out_dir / f"{prefix}.png"), full_page=True)
        except (PlaywrightError, OSError):
            logger.debug("Failed to save step screenshot (name=%s).", name, exc_info=True)
