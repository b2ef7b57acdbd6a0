from .client import AccountSelection, MoneyForwardClient, choose_account_selection, fetch_portfolio, trigger_refresh
from .login import LoginState, LoginStateMachine, MfaChallenge, classify_mfa
from .session import BrowserSession

__all__ = [
    "AccountSelection",
    "BrowserSession",
    "LoginState",
    "LoginStateMachine",
    "MfaChallenge",
    "MoneyForwardClient",
    "choose_account_selection",
    "classify_mfa",
    "fetch_portfolio",
    "trigger_refresh",
]
