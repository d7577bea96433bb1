"""
Multi-language keyword tables for consent banners.

Static data plus a handful of pure lookup functions.  The classifier
consumes :class:`MultiLanguageKeywords` as an optional collaborator
(``is_consent_text`` / ``reject_score_bonus``); the negotiation state
machine reads the category, preference and save tables directly.
"""

from __future__ import annotations

import re
from typing import Protocol

SUPPORTED_LANGUAGES: tuple[str, ...] = ("en", "de", "fr", "es", "it", "nl", "pt", "pl")

LANGUAGE_PATTERNS: dict[str, dict[str, tuple[str, ...]]] = {
    "en": {
        "cookie": ("cookie", "cookies"),
        "consent": ("consent", "agree", "accept", "allow", "approve"),
        "reject": ("reject", "decline", "deny", "refuse", "dismiss", "no thanks"),
        "privacy": ("privacy", "data protection", "personal data"),
        "manage": ("manage", "customize", "customise", "preferences", "settings", "options"),
        "necessary": ("necessary", "essential", "required", "functional", "strictly necessary"),
    },
    "de": {
        "cookie": ("cookie", "cookies", "kekse"),
        "consent": ("zustimmung", "einverständnis", "akzeptieren", "erlauben", "zustimmen"),
        "reject": ("ablehnen", "verweigern", "nein danke"),
        "privacy": ("datenschutz", "privatsphäre", "personenbezogene daten"),
        "manage": ("verwalten", "anpassen", "einstellungen", "optionen", "präferenzen"),
        "necessary": ("notwendig", "erforderlich", "wesentlich", "funktional"),
    },
    "fr": {
        "cookie": ("cookie", "cookies", "témoin", "témoins"),
        "consent": ("consentement", "accepter", "autoriser"),
        "reject": ("refuser", "rejeter", "décliner", "non merci"),
        "privacy": ("confidentialité", "vie privée", "données personnelles"),
        "manage": ("gérer", "personnaliser", "préférences", "paramètres"),
        "necessary": ("nécessaire", "essentiel", "requis", "fonctionnel"),
    },
    "es": {
        "cookie": ("cookie", "cookies"),
        "consent": ("consentimiento", "aceptar", "permitir", "autorizar"),
        "reject": ("rechazar", "denegar", "declinar", "no gracias"),
        "privacy": ("privacidad", "protección de datos", "datos personales"),
        "manage": ("gestionar", "personalizar", "preferencias", "configuración", "opciones"),
        "necessary": ("necesario", "esencial", "requerido", "funcional"),
    },
    "it": {
        "cookie": ("cookie",),
        "consent": ("consenso", "accettare", "accetta", "permettere", "autorizzare"),
        "reject": ("rifiutare", "rifiuta", "negare", "declinare", "no grazie"),
        "privacy": ("riservatezza", "protezione dati", "dati personali"),
        "manage": ("gestire", "personalizzare", "preferenze", "impostazioni", "opzioni"),
        "necessary": ("necessario", "essenziale", "richiesto", "funzionale"),
    },
    "nl": {
        "cookie": ("cookie", "cookies"),
        "consent": ("toestemming", "akkoord", "accepteren", "toestaan"),
        "reject": ("weigeren", "afwijzen", "nee bedankt"),
        "privacy": ("gegevensbescherming", "persoonlijke gegevens"),
        "manage": ("beheren", "aanpassen", "voorkeuren", "instellingen", "opties"),
        "necessary": ("noodzakelijk", "essentieel", "vereist", "functioneel"),
    },
    "pt": {
        "cookie": ("cookie", "cookies"),
        "consent": ("consentimento", "aceitar", "permitir", "autorizar"),
        "reject": ("rejeitar", "negar", "recusar", "não obrigado"),
        "privacy": ("privacidade", "proteção de dados", "dados pessoais"),
        "manage": ("gerenciar", "gerir", "personalizar", "preferências", "configurações"),
        "necessary": ("necessário", "essencial", "requerido", "funcional"),
    },
    "pl": {
        "cookie": ("cookie", "cookies", "ciasteczka", "pliki cookie"),
        "consent": ("zgoda", "akceptuję", "akceptować", "zezwól"),
        "reject": ("odrzuć", "odrzucić", "odmówić", "nie dziękuję"),
        "privacy": ("prywatność", "ochrona danych", "dane osobowe"),
        "manage": ("zarządzaj", "dostosuj", "preferencje", "ustawienia", "opcje"),
        "necessary": ("konieczne", "niezbędne", "wymagane", "funkcjonalne"),
    },
}

# ── Category classification (preference centers) ───────────────

# A category whose label matches any of these stays enabled.
ESSENTIAL_CATEGORY_KEYWORDS: tuple[str, ...] = (
    # en
    "necessary", "strictly necessary", "essential", "required", "functional",
    "functionality", "security", "technical", "always active",
    # de
    "notwendig", "erforderlich", "essenziell", "wesentlich", "funktional", "sicherheit", "technisch",
    # fr
    "nécessaire", "necessaire", "essentiel", "requis", "fonctionnel", "sécurité", "securite", "technique",
    # es
    "necesario", "necesari", "esencial", "requerido", "funcional", "seguridad", "técnica",
    # it
    "necessario", "necessari", "essenziale", "funzionale", "sicurezza", "tecnici",
    # nl
    "noodzakelijk", "essentieel", "vereist", "functioneel", "beveiliging",
    # pt
    "necessário", "necessári", "necessarios", "essencial", "funcional", "segurança",
    # pl
    "niezbędne", "konieczne", "wymagane", "funkcjonalne", "bezpieczeństwo",
)

# A category whose label matches any of these is switched off.
NON_ESSENTIAL_CATEGORY_KEYWORDS: tuple[str, ...] = (
    # en
    "marketing", "advertising", "advertisement", "targeting", "analytics", "analytical",
    "performance", "statistics", "statistical", "tracking", "personalization",
    "personalisation", "social media", "measurement", "profiling", "preferences cookies",
    # de
    "werbung", "statistik", "analyse", "personalisierung", "soziale medien", "reichweitenmessung",
    # fr
    "publicité", "publicitaires", "statistiques", "mesure d'audience", "personnalisation", "réseaux sociaux",
    # es
    "publicidad", "estadísticas", "analíticas", "personalización", "redes sociales",
    # it
    "pubblicità", "pubblicitari", "statistiche", "analitici", "personalizzazione", "profilazione",
    # nl
    "advertenties", "statistieken", "analytisch", "personalisatie", "sociale media",
    # pt
    "publicidade", "estatísticas", "analíticos", "personalização", "redes sociais",
    # pl
    "reklamowe", "marketingowe", "statystyczne", "analityczne", "personalizacja",
)

# ── Negotiation labels ─────────────────────────────────────────

MANAGE_PREFERENCES_LABELS: tuple[str, ...] = (
    "manage preferences", "manage cookies", "manage options", "manage settings", "manage choices",
    "cookie settings", "cookie preferences", "privacy settings", "customize", "customise",
    "more options", "settings", "preferences", "options", "set preferences", "let me choose",
    "einstellungen", "anpassen", "verwalten", "präferenzen",
    "paramètres", "personnaliser", "gérer", "préférences",
    "configuración", "configurar", "personalizar", "gestionar", "preferencias",
    "impostazioni", "personalizza", "gestisci", "preferenze",
    "instellingen", "aanpassen", "voorkeuren", "beheren",
    "configurações", "definições", "gerir", "preferências",
    "ustawienia", "dostosuj", "zarządzaj", "preferencje",
)

SAVE_PREFERENCES_LABELS: tuple[str, ...] = (
    "save", "save preferences", "save settings", "save choices", "save my choices", "save and exit",
    "save & exit", "save and close", "confirm", "confirm choices", "confirm my choices",
    "confirm selection", "allow selection", "accept selection", "apply", "submit", "done",
    "speichern", "auswahl bestätigen", "bestätigen", "auswahl erlauben",
    "enregistrer", "confirmer", "valider",
    "guardar", "confirmar", "aplicar",
    "salva", "salvare", "conferma",
    "opslaan", "bevestigen",
    "salvar", "guardar preferências",
    "zapisz", "potwierdź",
)

# Labels that look like a save action but grant full consent.
ACCEPT_ALL_LABELS: tuple[str, ...] = (
    "accept all", "allow all", "agree to all", "accept everything", "enable all",
    "alle akzeptieren", "alle zulassen", "tout accepter", "aceptar todo", "aceptar todas",
    "accetta tutto", "accetta tutti", "alles accepteren", "aceitar tudo", "akceptuj wszystkie",
)

PROGRESSIVE_LABELS: tuple[str, ...] = (
    "continue", "next", "more options", "learn more", "show details", "show purposes",
    "weiter", "continuer", "suivant", "continuar", "siguiente", "continua", "avanti",
    "doorgaan", "volgende", "próximo", "dalej",
)

# Dropdown option labels meaning "off".
REJECT_OPTION_LABELS: tuple[str, ...] = (
    "reject", "deny", "decline", "off", "disabled", "disable", "no", "opt out", "object",
    "do not allow", "aus", "nein", "ablehnen", "refuser", "non", "rechazar", "rifiuta", "weigeren", "nie",
)

_WORD_CACHE: dict[str, re.Pattern[str]] = {}


def _word_re(phrase: str) -> re.Pattern[str]:
    """Whole-word regex for *phrase*, compiled once."""
    pattern = _WORD_CACHE.get(phrase)
    if pattern is None:
        pattern = re.compile(rf"(?<!\w){re.escape(phrase)}(?!\w)", re.IGNORECASE)
        _WORD_CACHE[phrase] = pattern
    return pattern


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word, case-insensitive containment."""
    return bool(_word_re(phrase).search(text))


def contains_any(text: str, phrases: tuple[str, ...] | list[str]) -> bool:
    return any(contains_phrase(text, p) for p in phrases)


def strip_phrase(text: str, phrase: str) -> str:
    """Remove every whole-word occurrence of *phrase* from *text*."""
    return _word_re(phrase).sub(" ", text)


_STEM_CACHE: dict[str, re.Pattern[str]] = {}


def _stem_re(stem: str) -> re.Pattern[str]:
    """*stem* at a word start, allowing a short inflection suffix."""
    pattern = _STEM_CACHE.get(stem)
    if pattern is None:
        pattern = re.compile(rf"(?<!\w){re.escape(stem)}\w{{0,4}}(?!\w)", re.IGNORECASE)
        _STEM_CACHE[stem] = pattern
    return pattern


def contains_stem(text: str, stems: tuple[str, ...] | list[str]) -> bool:
    """Like ``contains_any`` but accepts inflected forms.

    ``funktional`` matches "Funktionale", ``nécessaire`` matches
    "nécessaires" and ``statistik`` matches "Statistiken".
    """
    return any(_stem_re(s).search(text) for s in stems)


def detect_language(text: str, declared: str | None = None) -> str:
    """Return the best supported language for *text*.

    The page's declared ``lang`` wins when it is supported; otherwise
    each language is scored by whole-word keyword hits and English
    is the default.
    """
    if declared:
        code = declared.strip().lower()[:2]
        if code in LANGUAGE_PATTERNS:
            return code

    lowered = text.lower()
    best_lang, best_score = "en", 0
    for lang, groups in LANGUAGE_PATTERNS.items():
        score = sum(len(_word_re(word).findall(lowered)) for words in groups.values() for word in words)
        if score > best_score:
            best_lang, best_score = lang, score
    return best_lang


def languages_present(text: str) -> list[str]:
    """Every supported language with at least one distinctive keyword in *text*."""
    lowered = text.lower()
    found: list[str] = []
    for lang, groups in LANGUAGE_PATTERNS.items():
        words = [w for g in ("consent", "reject", "privacy", "manage") for w in groups[g]]
        if any(contains_phrase(lowered, w) for w in words):
            found.append(lang)
    return found


def is_essential_label(label: str) -> bool:
    return contains_stem(label, ESSENTIAL_CATEGORY_KEYWORDS)


def is_non_essential_label(label: str) -> bool:
    return contains_stem(label, NON_ESSENTIAL_CATEGORY_KEYWORDS)


class KeywordSource(Protocol):
    """The multi-language keyword collaborator."""

    def is_consent_text(self, text: str) -> bool: ...

    def reject_score_bonus(self, text: str) -> float: ...


class MultiLanguageKeywords:
    """Keyword collaborator bound to one page language."""

    def __init__(self, language: str = "en") -> None:
        self.language = language if language in LANGUAGE_PATTERNS else "en"

    def _patterns(self) -> dict[str, tuple[str, ...]]:
        return LANGUAGE_PATTERNS[self.language]

    def is_consent_text(self, text: str) -> bool:
        """Cookie/consent vocabulary in the page language or English, plus a legal or CMP reference."""
        if not text:
            return False
        lowered = text.lower()
        groups = (self._patterns(), LANGUAGE_PATTERNS["en"])
        has_keywords = any(contains_phrase(lowered, w) for g in groups for k in ("cookie", "privacy") for w in g[k])
        context = 0
        if re.search(r"\b(gdpr|rgpd|dsgvo|rodo|ccpa)\b", lowered):
            context += 2
        if re.search(r"onetrust|cookiebot|trustarc|didomi|usercentrics", lowered):
            context += 3
        if any(contains_phrase(lowered, w) for g in groups for w in g["consent"]):
            context += 1
        return has_keywords and context >= 1

    def reject_score_bonus(self, text: str) -> float:
        """Extra reject evidence on a 0-10 scale from localized reject words."""
        lowered = text.lower().strip()
        score = 0.0
        for word in self._patterns()["reject"]:
            if contains_phrase(lowered, word):
                score += 3
        if self.language != "en":
            for word in LANGUAGE_PATTERNS["en"]["reject"]:
                if contains_phrase(lowered, word):
                    score += 2
        if re.search(r"alle.*(ablehnen|reject)|tout refuser|rechazar tod", lowered):
            score += 2
        if re.search(r"non.merci|no.thanks|no.gracias|no.grazie", lowered):
            score += 1
        return min(score, 10.0)
