"""
Support escalation payload generation.

Builds everything a channel adapter needs to hand an error over to human
support: available channels, the selected channel, ticket metadata, a
templated message and related FAQ entries. No network I/O happens here.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from recovery_engine.models.error import ErrorRecord
from recovery_engine.models.escalation import (
    EscalationTrigger,
    FAQItem,
    SupportChannelOption,
    SupportChannelType,
    SupportEscalation,
    TicketInfo,
    TicketPriority,
)
from recovery_engine.models.health import HealthSnapshot
from recovery_engine.models.taxonomy import ErrorSeverity
from recovery_engine.services.message_catalog import MessageCatalog, get_message_catalog

logger = logging.getLogger(__name__)


CRITICAL_CHANNEL_ORDER = [
    SupportChannelType.PHONE,
    SupportChannelType.WHATSAPP,
    SupportChannelType.LIVE_CHAT,
    SupportChannelType.EMAIL,
]

DEFAULT_CHANNEL_ORDER = [
    SupportChannelType.WHATSAPP,
    SupportChannelType.LIVE_CHAT,
    SupportChannelType.PHONE,
    SupportChannelType.EMAIL,
]

# Channels staffed only during business hours
BUSINESS_HOURS_CHANNELS = frozenset({
    SupportChannelType.WHATSAPP,
    SupportChannelType.PHONE,
    SupportChannelType.LIVE_CHAT,
})

PRIORITY_BY_SEVERITY = {
    ErrorSeverity.CRITICAL: TicketPriority.URGENT,
    ErrorSeverity.HIGH: TicketPriority.HIGH,
    ErrorSeverity.MEDIUM: TicketPriority.MEDIUM,
    ErrorSeverity.LOW: TicketPriority.LOW,
}

MAX_FAQS = 3


class SupportEscalationGenerator:
    """
    Generates SupportEscalation payloads.

    Args:
        catalog: Message catalog for templates, FAQs and channel texts
        timezone_name: IANA timezone of the support team
        business_days: Weekdays (Monday is 0) the team works
        hours_start: First business hour (inclusive)
        hours_end: Last business hour (exclusive)
        whatsapp: WhatsApp number
        phone: Phone number
        email: Support email address
        chat_url: Live chat URL
    """

    def __init__(
        self,
        catalog: Optional[MessageCatalog] = None,
        timezone_name: str = "America/Argentina/Buenos_Aires",
        business_days: Sequence[int] = (0, 1, 2, 3, 4),
        hours_start: int = 9,
        hours_end: int = 18,
        whatsapp: str = "",
        phone: str = "",
        email: str = "",
        chat_url: str = "",
    ):
        self.catalog = catalog or get_message_catalog()
        self.timezone_name = timezone_name
        self.business_days = frozenset(business_days)
        self.hours_start = hours_start
        self.hours_end = hours_end
        self.whatsapp = whatsapp
        self.phone = phone
        self.email = email
        self.chat_url = chat_url

    @classmethod
    def from_settings(cls, settings, catalog: Optional[MessageCatalog] = None) -> "SupportEscalationGenerator":
        return cls(
            catalog=catalog,
            timezone_name=settings.support_timezone,
            business_days=settings.support_business_days,
            hours_start=settings.support_hours_start,
            hours_end=settings.support_hours_end,
            whatsapp=settings.support_whatsapp,
            phone=settings.support_phone,
            email=settings.support_email,
            chat_url=settings.support_chat_url,
        )

    # ========== Channels ==========

    def is_business_hours(self, now: Optional[datetime]) -> Optional[bool]:
        """
        Whether ``now`` falls inside the support window.

        Returns:
            None when the window cannot be evaluated (no clock, naive
            timestamp or unknown timezone)
        """
        if now is None or now.tzinfo is None:
            return None
        try:
            local = now.astimezone(ZoneInfo(self.timezone_name))
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning(f"Cannot evaluate support hours for {self.timezone_name}: {e}")
            return None
        return local.weekday() in self.business_days and self.hours_start <= local.hour < self.hours_end

    def _contact(self, channel: SupportChannelType) -> str:
        if channel == SupportChannelType.WHATSAPP:
            return f"https://wa.me/{''.join(c for c in self.whatsapp if c.isdigit())}"
        if channel == SupportChannelType.PHONE:
            return f"tel:{self.phone}"
        if channel == SupportChannelType.EMAIL:
            return f"mailto:{self.email}"
        return self.chat_url

    def channels(self, severity: ErrorSeverity, now: Optional[datetime]) -> List[SupportChannelOption]:
        """
        Support channels in priority order for a severity.

        Business hours channels are unavailable outside the window, and
        also whenever the window cannot be evaluated.
        """
        in_hours = self.is_business_hours(now)
        order = CRITICAL_CHANNEL_ORDER if severity == ErrorSeverity.CRITICAL else DEFAULT_CHANNEL_ORDER

        options = []
        for channel in order:
            staffed = channel in BUSINESS_HOURS_CHANNELS
            options.append(SupportChannelOption(
                type=channel,
                available=(in_hours is True) if staffed else True,
                contact=self._contact(channel),
                estimated_response_time=self.catalog.response_time(channel.value),
                business_hours=self.catalog.business_hours if staffed else None,
            ))
        return options

    # ========== Content ==========

    def related_faqs(self, record: ErrorRecord) -> List[FAQItem]:
        """Top FAQ entries, related to the category first, then by helpfulness."""
        faqs = self.catalog.faqs()
        faqs.sort(key=lambda f: (f.category != record.category, -f.helpful_count))
        return faqs[:MAX_FAQS]

    def _message(self, record: ErrorRecord, note: Optional[str]) -> str:
        lines = [
            "🆘 *Error en la plataforma*",
            "",
            "Hola! Tengo un problema y necesito ayuda.",
            "",
            "📋 *Detalles del Error:*",
            f"• Tipo: {record.category.value}",
            f"• Área: {record.platform_area.value}",
            f"• Usuario: {record.user_context.value}",
            f"• ID: {record.id}",
            "",
            "📱 *Descripción:*",
            record.user_message,
            "",
        ]
        if note:
            lines.extend(["🔍 *Contexto Adicional:*", note, ""])
        lines.append("¿Pueden ayudarme? Gracias!")
        return "\n".join(lines)

    def _email_subject(self, record: ErrorRecord) -> str:
        return f"Error en la plataforma - {record.category.value} - ID: {record.id[-8:]}"

    def _email_body(self, record: ErrorRecord, note: Optional[str]) -> str:
        parts = [
            "Estimado equipo de soporte,",
            "",
            "Tengo un problema en la plataforma que requiere su asistencia.",
            "",
            "DETALLES DEL ERROR:",
            f"- Tipo de error: {record.category.value}",
            f"- Área de la plataforma: {record.platform_area.value}",
            f"- Tipo de usuario: {record.user_context.value}",
            f"- Gravedad: {record.severity.value}",
            f"- ID del error: {record.id}",
            f"- Código: {record.code}",
            f"- Timestamp: {record.timestamp.isoformat()}",
            "",
            "DESCRIPCIÓN:",
            record.user_message,
            "",
        ]
        if note:
            parts.extend(["CONTEXTO ADICIONAL:", note, ""])
        parts.extend([
            "INFORMACIÓN TÉCNICA:",
            record.technical_details or "No disponible",
            "",
            "Por favor, ayúdenme a resolver este problema.",
        ])
        return "\n".join(parts)

    # ========== Generation ==========

    def generate(
        self,
        record: ErrorRecord,
        health: Optional[HealthSnapshot] = None,
        trigger: EscalationTrigger = EscalationTrigger.MANUAL,
        now: Optional[datetime] = None,
    ) -> SupportEscalation:
        """
        Build the escalation payload for a record.

        Args:
            record: Error being escalated
            health: Health snapshot at escalation time
            trigger: What caused the escalation
            now: Current time, timezone aware

        Returns:
            SupportEscalation payload
        """
        created_at = now or datetime.now(timezone.utc)
        channels = self.channels(record.severity, created_at)
        selected = next(
            (c.type for c in channels if c.available),
            SupportChannelType.EMAIL,
        )

        priority = PRIORITY_BY_SEVERITY[record.severity]
        ticket = TicketInfo(
            ticket_id=f"TKT-{uuid.uuid4().hex[:8].upper()}",
            priority=priority,
            estimated_resolution=self.catalog.ticket_resolution(priority.value),
        )

        note = self.catalog.escalation_context(record.user_context, record.platform_area)

        return SupportEscalation(
            error_id=record.id,
            error_code=record.code,
            category=record.category,
            severity=record.severity,
            platform_area=record.platform_area,
            user_context=record.user_context,
            user_message=record.user_message,
            contextual_note=note,
            level=record.escalation_level,
            trigger=trigger,
            channels=channels,
            selected_channel=selected,
            ticket=ticket,
            message=self._message(record, note),
            email_subject=self._email_subject(record),
            email_body=self._email_body(record, note),
            faqs=self.related_faqs(record),
            frustration_score=health.frustration_score if health else 0.0,
            error_rate=health.error_rate if health else 0.0,
            created_at=created_at,
        )
