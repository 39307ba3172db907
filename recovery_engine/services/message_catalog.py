"""
YAML backed message catalog.

Holds every user facing string the engine produces: category messages,
failure reason messages, strategy labels, contextual hints, escalation
sentences, FAQ entries and support channel texts. Swapping the YAML file
changes the wording without touching classification code.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from recovery_engine.models.escalation import FAQItem
from recovery_engine.models.taxonomy import (
    ErrorCategory,
    PlatformArea,
    RecoveryStrategy,
    UserContext,
)

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "messages.yaml"

FALLBACK_MESSAGE = "Ocurrió un error inesperado. Intenta de nuevo o contáctanos si persiste."


class _KeepMissing(dict):
    """format_map mapping that leaves unknown placeholders untouched."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class MessageCatalog:
    """
    Lookup tables for localized messages.

    Args:
        data: Parsed catalog content (same shape as ``data/messages.yaml``)
    """

    REQUIRED_SECTIONS = ["categories", "actions"]

    def __init__(self, data: Dict[str, Any]):
        for section in self.REQUIRED_SECTIONS:
            if section not in data:
                raise ValueError(f"Missing required section '{section}' in message catalog")

        self._categories: Dict[str, Dict[str, Any]] = data.get("categories") or {}
        self._reasons: Dict[str, Dict[str, str]] = data.get("reasons") or {}
        self._actions: Dict[str, str] = data.get("actions") or {}
        self._hints: Dict[str, Dict[str, str]] = data.get("hints") or {}
        self._escalation: Dict[str, Any] = data.get("escalation_context") or {}
        self._support: Dict[str, Any] = data.get("support") or {}
        self._faqs: List[FAQItem] = []

        for entry in data.get("faqs") or []:
            try:
                self._faqs.append(FAQItem(**entry))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed FAQ entry {entry!r}: {e}")

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> "MessageCatalog":
        """
        Load a catalog from a YAML file.

        Args:
            path: Catalog file. Defaults to the packaged catalog.

        Returns:
            MessageCatalog instance

        Raises:
            FileNotFoundError: If the file does not exist
            yaml.YAMLError: If the file is malformed
        """
        catalog_path = Path(path) if path else DEFAULT_CATALOG_PATH

        if not catalog_path.exists():
            raise FileNotFoundError(f"Message catalog not found: {catalog_path}")

        try:
            with open(catalog_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error(f"Failed to parse message catalog {catalog_path}: {e}")
            raise

        logger.info(f"Loaded message catalog from {catalog_path}")
        return cls(data)

    # ========== User messages ==========

    def user_message(
        self,
        category: ErrorCategory,
        user_context: Optional[UserContext] = None,
        reason: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Resolve the user facing message for an error.

        Order: failure reason, category + user context, category default,
        unknown default.
        """
        template = None

        if reason:
            template = self._reasons.get(category.value, {}).get(reason)

        entry = self._categories.get(category.value) or {}
        if template is None and user_context is not None:
            template = (entry.get("by_context") or {}).get(user_context.value)
        if template is None:
            template = entry.get("default")
        if template is None:
            template = (self._categories.get(ErrorCategory.UNKNOWN.value) or {}).get("default", FALLBACK_MESSAGE)

        if params:
            return template.format_map(_KeepMissing(params))
        return template

    def has_reason(self, category: ErrorCategory, reason: str) -> bool:
        return reason in self._reasons.get(category.value, {})

    # ========== Actions and hints ==========

    def action_label(self, strategy: RecoveryStrategy) -> str:
        return self._actions.get(strategy.value, strategy.value)

    def hint_for(self, user_context: UserContext, platform_area: PlatformArea) -> Optional[str]:
        return (self._hints.get(user_context.value) or {}).get(platform_area.value)

    # ========== Escalation ==========

    def escalation_context(self, user_context: UserContext, platform_area: PlatformArea) -> Optional[str]:
        """
        Contextual sentences for a support message.

        A combined role + area sentence replaces the area sentence when one
        exists for the pair.
        """
        sentences = []

        role = (self._escalation.get("user_context") or {}).get(user_context.value)
        if role:
            sentences.append(role)

        combined = ((self._escalation.get("combined") or {}).get(user_context.value) or {}).get(platform_area.value)
        area = combined or (self._escalation.get("platform_area") or {}).get(platform_area.value)
        if area:
            sentences.append(area)

        return ". ".join(sentences) if sentences else None

    def faqs(self) -> List[FAQItem]:
        return list(self._faqs)

    @property
    def business_hours(self) -> str:
        return self._support.get("business_hours", "")

    def response_time(self, channel: str) -> str:
        return (self._support.get("response_times") or {}).get(channel, "")

    def ticket_resolution(self, priority: str) -> str:
        return (self._support.get("ticket_resolution") or {}).get(priority, "")


_catalog_cache: Dict[str, MessageCatalog] = {}


def get_message_catalog(path: Optional[Union[str, Path]] = None) -> MessageCatalog:
    """
    Get a catalog, loading each file once.

    Args:
        path: Catalog file. Defaults to the configured or packaged catalog.

    Returns:
        MessageCatalog instance
    """
    if path is None:
        from recovery_engine.config import settings
        path = settings.message_catalog_path or DEFAULT_CATALOG_PATH

    cache_key = str(path)
    if cache_key not in _catalog_cache:
        _catalog_cache[cache_key] = MessageCatalog.load(path)
    return _catalog_cache[cache_key]
