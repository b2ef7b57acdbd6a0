from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SiteSelectors:
    """
    The sign-in and app pages are owned by the site; selectors may change over time.
    Keep all UI selectors here for easy maintenance.
    """

    # Sign-in (id.moneyforward.com). The same submit button is reused on every step.
    email_input: str = "input[type=email]"
    password_input: str = "input[type=password]"
    submit_button: str = "button#submitto"

    # MFA
    totp_input: str = "input#otp_attempt"
    email_otp_input: str = "input#email_otp"

    # "Continue as <email>" account confirmation form shown when resuming a session
    account_form: str = "form[method=post]"
    account_form_submit: str = "form[method=post] > button"

    # Portfolio
    portfolio_table: str = "table.table-eq"
    portfolio_rows: str = "table.table-eq tr"
    portfolio_cells: str = "td, th"

    # Accounts page "refresh all"
    refresh_all_marker: str = "p.aggregation-queue-all"
    refresh_all_link: str = "p.aggregation-queue-all > a"
