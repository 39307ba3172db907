"""
Unit tests for the YAML message catalog.
"""

import pytest
import yaml

from recovery_engine.models.taxonomy import (
    ErrorCategory,
    PlatformArea,
    RecoveryStrategy,
    UserContext,
)
from recovery_engine.services.message_catalog import (
    DEFAULT_CATALOG_PATH,
    MessageCatalog,
    get_message_catalog,
)


@pytest.fixture
def catalog() -> MessageCatalog:
    return MessageCatalog.load()


class TestLoading:
    """Test catalog loading and validation."""

    def test_packaged_catalog_exists(self):
        assert DEFAULT_CATALOG_PATH.exists()

    def test_every_category_has_a_default(self, catalog):
        for category in ErrorCategory:
            assert catalog.user_message(category)

    def test_every_strategy_has_a_label(self, catalog):
        for strategy in RecoveryStrategy:
            assert catalog.action_label(strategy) != strategy.value

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            MessageCatalog.load(tmp_path / "missing.yaml")

    def test_malformed_yaml_raises(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("categories: [unclosed\n", encoding="utf-8")

        with pytest.raises(yaml.YAMLError):
            MessageCatalog.load(path)

    def test_missing_required_section_raises(self):
        with pytest.raises(ValueError, match="actions"):
            MessageCatalog({"categories": {}})

    def test_malformed_faq_is_skipped(self):
        catalog = MessageCatalog({
            "categories": {},
            "actions": {},
            "faqs": [{"id": "broken"}],
        })

        assert catalog.faqs() == []

    def test_get_message_catalog_caches_per_path(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "categories:\n  unknown:\n    default: Algo falló\nactions:\n  retry: Reintentar\n",
            encoding="utf-8",
        )

        first = get_message_catalog(path)
        second = get_message_catalog(path)

        assert first is second
        assert first.user_message(ErrorCategory.NETWORK) == "Algo falló"


class TestUserMessages:
    """Test message resolution order."""

    def test_reason_wins_over_context(self, catalog):
        message = catalog.user_message(ErrorCategory.AUTHENTICATION, UserContext.PROVIDER, "session_expired")

        assert "expiró" in message

    def test_context_variant(self, catalog):
        message = catalog.user_message(ErrorCategory.FILE_UPLOAD, UserContext.PROVIDER)

        assert "portafolio" in message

    def test_falls_back_to_category_default(self, catalog):
        provider = catalog.user_message(ErrorCategory.PAYMENT, UserContext.PROVIDER)
        default = catalog.user_message(ErrorCategory.PAYMENT)

        assert provider == default

    def test_unknown_reason_falls_back(self, catalog):
        message = catalog.user_message(ErrorCategory.NETWORK, reason="no_such_reason")

        assert message == catalog.user_message(ErrorCategory.NETWORK)

    def test_placeholders_are_filled(self, catalog):
        message = catalog.user_message(
            ErrorCategory.FILE_UPLOAD,
            reason="size_too_large",
            params={"max_size": "5MB"},
        )

        assert message.endswith("5MB.")

    def test_missing_placeholder_is_kept(self, catalog):
        message = catalog.user_message(ErrorCategory.FILE_UPLOAD, reason="invalid_format", params={"other": 1})

        assert "{allowed_formats}" in message

    def test_has_reason(self, catalog):
        assert catalog.has_reason(ErrorCategory.NETWORK, "offline")
        assert not catalog.has_reason(ErrorCategory.CHAT, "offline")


class TestContextualTexts:
    """Test hints, escalation sentences and support texts."""

    def test_provider_portfolio_hint(self, catalog):
        hint = catalog.hint_for(UserContext.PROVIDER, PlatformArea.PORTFOLIO)

        assert "JPG" in hint

    def test_no_hint_for_guest(self, catalog):
        assert catalog.hint_for(UserContext.GUEST, PlatformArea.PORTFOLIO) is None

    def test_combined_sentence_replaces_area_sentence(self, catalog):
        note = catalog.escalation_context(UserContext.PROVIDER, PlatformArea.PORTFOLIO)

        assert note.startswith("Soy un profesional AS")
        assert "portafolio" in note

    def test_role_and_area_sentences_are_joined(self, catalog):
        note = catalog.escalation_context(UserContext.EXPLORADOR, PlatformArea.PAYMENTS)

        assert note == "Soy un cliente buscando servicios. Estaba intentando realizar un pago"

    def test_no_context_sentence(self, catalog):
        assert catalog.escalation_context(UserContext.GUEST, PlatformArea.SYSTEM) is None

    def test_support_texts(self, catalog):
        assert "9:00 - 18:00" in catalog.business_hours
        assert catalog.response_time("email") == "2-4 horas laborables"
        assert catalog.ticket_resolution("urgent") == "2-4 horas"
        assert catalog.response_time("carrier_pigeon") == ""

    def test_faqs_are_copies(self, catalog):
        faqs = catalog.faqs()
        faqs.clear()

        assert len(catalog.faqs()) == 5
