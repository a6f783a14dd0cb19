from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class PortalSelectors:
    """
    The NHS website, NHS login and the NHS App are separate web apps; selectors change over time.
    Keep all UI selectors/text hooks here for easy maintenance.

    Tuples are fallback chains: tried in order, first visible match wins. Some class names
    (e.g. `MenuItem_listMenuItem_iXt37`) are build-generated by the NHS App and are paired with
    a `[class*=...]` prefix match.
    """

    # nhs.uk homepage
    homepage_url: str = "https://www.nhs.uk"
    auth_redirect_url: str = "https://www.nhs.uk/auth/redirect?target=https://www.nhsapp.service.nhs.uk/patient"
    my_account_links: tuple[str, ...] = (
        "a.nhsuk-account__login--link",
        'a[href*="/nhs-app/account/"]',
        ".nhsuk-account__login a",
        'a:has-text("My account")',
    )
    continue_to_login_button: str = 'a.nhsuk-button--login[href*="auth/redirect"]'

    # Cookie consent (nhs.uk and NHS login)
    cookie_accept_button: str = "#nhsuk-cookie-banner__link_accept_analytics"
    cookie_accept_texts: tuple[str, ...] = (
        "I'm OK with analytics cookies",
        "Accept all cookies",
        "Accept cookies",
    )

    # NHS App login landing page ("Continue with NHS login")
    app_login_continue_buttons: tuple[str, ...] = (
        "#viewInstructionsButton",
        "button.Login_continueWithNhsLogin_OUNXI",
        'button[class*="Login_continueWithNhsLogin"]',
    )

    # NHS login: email step
    email_inputs: tuple[str, ...] = ("#user-email", "#email")
    email_submit_buttons: tuple[str, ...] = (
        'button[type="submit"]',
        "button.nhsuk-button",
        'button[class*="submit"]',
        'button[class*="continue"]',
    )

    # NHS login: passkey failure page ("There was a problem" / "What do you want to do?")
    passkey_failure_markers: tuple[str, ...] = (
        "There was a problem",
        "We were unable to authenticate you",
        "What do you want to do?",
        "Log in using my password instead",
    )
    passkey_password_radio_id: str = "log-in-with-password"
    passkey_continue_buttons: tuple[str, ...] = (
        "button[data-qa='passkey-failed-continue-button']",
        'button[type="submit"]',
        'button:has-text("Continue")',
    )
    # Older passkey interstitials
    passkey_dismiss_texts: tuple[str, ...] = ("Use password", "Continue with password", "Skip", "Not now")

    # NHS login: password step
    password_inputs: tuple[str, ...] = ("#password-input", "#password", "input[data-qa='password-input']")
    password_submit_buttons: tuple[str, ...] = (
        "button[data-qa='enter-password-submit-button']",
        'button[type="submit"]',
    )

    # NHS login: one-time passcode
    otp_inputs: tuple[str, ...] = ("#otp-input", "input[data-qa='otp-input']")
    otp_submit_buttons: tuple[str, ...] = ("button[data-qa='otp-submit']", 'button[type="submit"]')

    # NHS App: post-login
    patient_home_url: str = "https://www.nhsapp.service.nhs.uk/patient/"
    access_services_text: str = "Access your NHS services"
    login_greetings: tuple[str, ...] = (
        "Good morning",
        "Good afternoon",
        "Good evening",
        "Services",
        "Your health",
    )

    # GP health record
    gp_record_url: str = "https://www.nhsapp.service.nhs.uk/patient/health-records/gp-medical-record"
    gp_record_links: tuple[str, ...] = (
        "li[data-qa='home-panel-link-gp-medical-records'] a",
        "a[href='/patient/health-records/gp-medical-record']",
        'a:has-text("GP health record")',
    )
    gp_record_consent_continue: tuple[str, ...] = (
        "button[data-qa='nhsuk-continue-button']",
        'button:text-is("Continue")',
    )
    gp_record_markers: tuple[str, ...] = ("Your GP health record", "NHS number:")

    pagination_next: str = "a.nhsuk-pagination__link--next"

    # Documents
    documents_list: str = "div.nhsuk-grid-column-full ul"
    document_items: str = "li.MenuItem_listMenuItem_iXt37, li[class*='MenuItem_listMenuItem']"
    document_title_label: str = "span[aria-label]"
    document_item_note: str = "p"
    document_page_title: str = "div[data-qa='beta-template-page-title']"
    document_action_menu: str = "ul[data-sid='action-list-menu']"
    document_download_button: str = "a#btn_downloadDocument"
    document_view_button: str = "a#btn_viewDocument"
    document_embedded_image: str = "div#documentContainer img"
    document_comments: str = "div.nhsuk-u-padding-bottom-3"
    document_info: str = "div#documentInfo p"
    document_unavailable_text: str = "is not available through the NHS App"
    document_upload_error_markers: tuple[str, ...] = ("COM/API/", "PATIENTUPLOAD")

    # Consultations and events
    consultation_cards: str = (
        "div.MedicalRecordCardGroupItem_nhsuk-card-group__item_Kk8X9, "
        "div[class*='MedicalRecordCardGroupItem_nhsuk-card-group__item']"
    )
    consultation_header: str = "p[data-purpose='record-item-header']"
    consultation_detail: str = "p[data-purpose='record-item-detail']"
    consultation_entries: str = "ul.nhsuk-list--bullet li"

    # Test results
    test_results_sub_heading: str = "p[data-qa='page-sub-heading']"
    test_results_groups: str = "section[data-qa='test-results-group']"
    test_results_group_heading: str = "h2[data-qa='test-results-group-heading']"
    test_results_cards: str = "li.nhsapp-card[data-qa='test-result-card']"
    test_results_card_link: str = "a.nhsapp-card__link"
    test_results_card_date: str = "p[data-qa='test-result-date']"
    # Year pages use an older "record item" layout
    test_results_year_groups: str = "div[data-purpose='record-item']"
    test_results_year_heading: str = "h3[data-purpose='record-group-header']"
    test_results_year_cards: str = "li[data-qa='test-results-card']"
    test_results_year_name: str = "span[data-qa='test-result-name']"
    test_results_year_card_link: str = "a"
    test_results_view_older: str = "div#view-older-results a"
    test_results_year_links: str = "a.nhsapp-card__link"
    test_result_rows: str = "tr#testResultData"
    test_result_details: str = "span[data-qa='result-details']"
