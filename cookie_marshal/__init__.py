"""Detects cookie-consent banners and rejects non-essential processing."""

from cookie_marshal.config import AgentSettings, get_settings
from cookie_marshal.consent.classifier import ElementClassifier
from cookie_marshal.coordinator import StrategyCoordinator
from cookie_marshal.session import AgentSession
from cookie_marshal.storage import JsonFileStorage, MemoryStorage, Storage

__all__ = [
    "AgentSession",
    "AgentSettings",
    "ElementClassifier",
    "JsonFileStorage",
    "MemoryStorage",
    "Storage",
    "StrategyCoordinator",
    "get_settings",
]
