"""Shared constants for consent-banner detection across the codebase."""

from __future__ import annotations

import re
from urllib import parse

from playwright import async_api

# Consent-manager keywords matched against iframe **hostname** only.
# Matching the full URL would false-positive on ad-sync iframes that
# carry ``gdpr=1`` or ``gdpr_consent=…`` in their query strings.
CONSENT_HOST_KEYWORDS: tuple[str, ...] = (
    "consent",
    "onetrust",
    "cookiebot",
    "sourcepoint",
    "trustarc",
    "didomi",
    "quantcast",
    "gdpr",
    "privacy",
    "cmp",
    "cookie",
)

# Substrings in the hostname that indicate an ad-tech sync/pixel
# iframe rather than a real consent-manager frame.
CONSENT_HOST_EXCLUDE: tuple[str, ...] = (
    "cookie-sync",
    "pixel",
    "-sync.",
    "ad-sync",
    "user-sync",
    "match.",
    "prebid",
)

# Selectors whose matches become banner candidates on each scan.
# Anchors and spans are skipped: they are links and labels *inside*
# banners, never the banner itself.
BANNER_CANDIDATE_SELECTORS: tuple[str, ...] = (
    "#onetrust-banner-sdk",
    "#onetrust-consent-sdk",
    "#CybotCookiebotDialog",
    "#didomi-popup",
    "#didomi-notice",
    "#qc-cmp2-ui",
    "#truste-consent-track",
    "#usercentrics-root",
    '[class*="cookie" i]:not(a):not(span):not([class*="policy" i])',
    '[id*="cookie" i]:not(a):not(span):not([id*="policy" i])',
    '[class*="consent" i]:not(a):not(span):not([class*="terms" i])',
    '[id*="consent" i]:not(a):not(span):not([id*="terms" i])',
    '[class*="gdpr" i]:not(a):not(span)',
    '[id*="gdpr" i]:not(a):not(span)',
    '[class*="privacy-banner" i]',
    '[aria-label*="cookie" i]:not(a):not(button)',
    '[role="dialog"]',
    '[role="alertdialog"]',
)

# Known consent-management products.  A match on class or id is a
# framework fingerprint and short-circuits banner classification.
FRAMEWORK_IDENTIFIERS: dict[str, tuple[str, ...]] = {
    "onetrust": ("onetrust", "optanon"),
    "cookiebot": ("cookiebot", "cybotcookiebot"),
    "didomi": ("didomi",),
    "trustarc": ("trustarc", "truste"),
    "quantcast": ("quantcast", "qc-cmp"),
    "usercentrics": ("usercentrics",),
    "termly": ("termly",),
    "iubenda": ("iubenda",),
    "consentmanager": ("consentmanager",),
    "cookiefirst": ("cookiefirst",),
    "cookielaw": ("cookielaw",),
}

# Static per-framework difficulty, consumed by the complexity estimator.
FRAMEWORK_DIFFICULTY: dict[str, float] = {
    "cookiebot": 0.8,
    "onetrust": 0.9,
    "trustarc": 0.7,
    "quantcast": 0.6,
    "didomi": 0.8,
    "usercentrics": 0.7,
    "termly": 0.4,
    "iubenda": 0.5,
    "consentmanager": 0.5,
    "cookiefirst": 0.4,
    "cookielaw": 0.3,
}
UNKNOWN_FRAMEWORK_DIFFICULTY = 0.5

# Tags and roles that are page chrome, never consent banners.
EXCLUDED_TAGS: frozenset[str] = frozenset({"nav", "header", "footer", "video", "audio"})
EXCLUDED_ROLES: frozenset[str] = frozenset({"navigation", "menubar", "search"})

# Class/id fragments of non-consent widgets.
EXCLUDED_NAMING: tuple[str, ...] = (
    "cart",
    "checkout",
    "basket",
    "product",
    "price",
    "player",
    "video",
    "login",
    "signin",
    "newsletter",
    "share",
    "devtools",
)

# Visible-text phrases that identify a non-consent widget.  An
# exclusion hit beats any amount of positive keyword evidence.
EXCLUSION_PHRASES: dict[str, tuple[str, ...]] = {
    "commerce": (
        "add to cart",
        "add to basket",
        "shopping cart",
        "proceed to checkout",
        "buy now",
        "order summary",
        "discount code",
        "apply coupon",
    ),
    "authentication": (
        "sign in to",
        "sign up for",
        "forgot password",
        "forgot your password",
        "create an account",
        "log in to your account",
        "username",
        "password",
    ),
    "navigation": (
        "skip to content",
        "skip to main content",
        "main menu",
        "sort by",
        "search results",
        "previous page",
        "next page",
    ),
    "media": (
        "play video",
        "watch now",
        "now playing",
        "download now",
    ),
    "social": (
        "share on facebook",
        "share on twitter",
        "follow us on",
        "subscribe to our newsletter",
        "join our newsletter",
    ),
    "developer-tooling": (
        "stack trace",
        "devtools",
        "debug console",
        "webpack",
        "hot module replacement",
    ),
}

# Ancestor class/id fragments that mark a consent container.
CONSENT_CONTAINER_NAMING: tuple[str, ...] = (
    "cookie",
    "consent",
    "gdpr",
    "privacy",
    "cmp",
    "banner",
)

# Attribute markers of script-driven controls.
DYNAMIC_ATTRIBUTE_MARKERS: tuple[str, ...] = ("onclick", "data-action", "data-cb-action", "ng-click", "v-on:click", "@click")

# Reject-style button text patterns.  Used when persisting learned
# button phrases so that accept labels are never fed back as evidence.
REJECT_BUTTON_RE: re.Pattern[str] = re.compile(
    r"reject|decline|deny|refuse|necessary only|essential only|only necessary|only essential",
    re.IGNORECASE,
)


def is_consent_frame(
    frame: async_api.Frame,
    main_frame: async_api.Frame,
) -> bool:
    """Return ``True`` if *frame* looks like a consent-manager iframe.

    Checks the frame hostname against :data:`CONSENT_HOST_KEYWORDS`
    and :data:`CONSENT_HOST_EXCLUDE`.  Skips the main frame.
    """
    if frame == main_frame:
        return False
    try:
        hostname = parse.urlparse(frame.url).hostname or ""
    except Exception:
        return False
    hostname_lower = hostname.lower()
    if any(ex in hostname_lower for ex in CONSENT_HOST_EXCLUDE):
        return False
    return any(kw in hostname_lower for kw in CONSENT_HOST_KEYWORDS)
