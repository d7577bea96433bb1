"""Per-framework selector profiles for the negotiation state machine.

A profile substitutes known selectors at each negotiation state but
never changes the transitions.  Unknown frameworks get the generic
profile, which relies on label matching alone.
"""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass(frozen=True)
class FrameworkProfile:
    name: str
    reject_selectors: tuple[str, ...] = ()
    manage_selectors: tuple[str, ...] = ()
    preference_selectors: tuple[str, ...] = ()
    toggle_selectors: tuple[str, ...] = ()
    save_selectors: tuple[str, ...] = ()


# Containers and markers that indicate an open preference center.
GENERIC_PREFERENCE_SELECTORS: tuple[str, ...] = (
    '[role="tabpanel"]',
    '[class*="preference-center" i]',
    '[class*="preferences" i]',
    '[class*="cookie-settings" i]',
    '[class*="consent-settings" i]',
    '[class*="category" i]',
    '[id*="preference" i]',
    '[aria-label*="preferences" i]',
    '[aria-label*="cookie settings" i]',
)

GENERIC_TOGGLE_SELECTORS: tuple[str, ...] = (
    'input[type="checkbox"]',
    '[role="switch"]',
    '[role="checkbox"]',
    "select",
)

GENERIC = FrameworkProfile(
    name="generic",
    preference_selectors=GENERIC_PREFERENCE_SELECTORS,
    toggle_selectors=GENERIC_TOGGLE_SELECTORS,
)

PROFILES: dict[str, FrameworkProfile] = {
    "onetrust": FrameworkProfile(
        name="onetrust",
        reject_selectors=(
            "#onetrust-reject-all-handler",
            ".ot-pc-refuse-all-handler",
            ".onetrust-close-btn-ui",
        ),
        manage_selectors=("#onetrust-pc-btn-handler", ".ot-sdk-show-settings"),
        preference_selectors=("#onetrust-pc-sdk", ".ot-pc-content", "#ot-pc-content", *GENERIC_PREFERENCE_SELECTORS),
        toggle_selectors=(".ot-switch input", ".category-switch-handler", *GENERIC_TOGGLE_SELECTORS),
        save_selectors=(".save-preference-btn-handler", ".ot-pc-footer .save-preference-btn-handler"),
    ),
    "cookiebot": FrameworkProfile(
        name="cookiebot",
        reject_selectors=(
            "#CybotCookiebotDialogBodyButtonDecline",
            "#CybotCookiebotDialogBodyLevelButtonLevelOptinDeclineAll",
            "a[data-cb-decline]",
            '[id*="reject" i]',
            '[class*="reject" i]',
        ),
        manage_selectors=("#CybotCookiebotDialogBodyLevelButtonCustomize", "#CybotCookiebotDialogNavDetails"),
        preference_selectors=("#CybotCookiebotDialogTabContent", ".CybotCookiebotDialogBodyLevelButtonWrapper", *GENERIC_PREFERENCE_SELECTORS),
        toggle_selectors=(".CybotCookiebotDialogBodyLevelButton", *GENERIC_TOGGLE_SELECTORS),
        save_selectors=("#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowallSelection",),
    ),
    "didomi": FrameworkProfile(
        name="didomi",
        reject_selectors=(
            "#didomi-notice-disagree-button",
            "[data-testid='notice-disagree-btn']",
            ".didomi-continue-without-agreeing",
        ),
        manage_selectors=("#didomi-notice-learn-more-button", "[data-testid='notice-learn-more-btn']"),
        preference_selectors=(".didomi-consent-popup-preferences", "#didomi-consent-popup", *GENERIC_PREFERENCE_SELECTORS),
        toggle_selectors=(".didomi-components-radio__option", *GENERIC_TOGGLE_SELECTORS),
        save_selectors=(".didomi-consent-popup-actions button[aria-label*='Save' i]", "[data-testid='save-btn']"),
    ),
}


def profile_for(framework: str | None) -> FrameworkProfile:
    if framework is None:
        return GENERIC
    return PROFILES.get(framework, GENERIC)
