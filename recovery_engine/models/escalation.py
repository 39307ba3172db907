"""Support escalation data models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .taxonomy import ErrorCategory, ErrorSeverity, PlatformArea, UserContext


class EscalationTrigger(str, Enum):
    """What caused a support escalation."""

    MANUAL = "manual"
    AUTO_RETRY_FAILED = "auto_retry_failed"
    SEVERITY_CRITICAL = "severity_critical"
    USER_FRUSTRATED = "user_frustrated"


class SupportChannelType(str, Enum):
    """Human support channel."""

    WHATSAPP = "whatsapp"
    PHONE = "phone"
    EMAIL = "email"
    LIVE_CHAT = "live_chat"


class TicketPriority(str, Enum):
    """Support ticket priority."""

    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SupportChannelOption(BaseModel):
    """A support channel and whether it can be offered right now."""

    type: SupportChannelType
    available: bool
    contact: str
    estimated_response_time: str
    business_hours: Optional[str] = None


class TicketInfo(BaseModel):
    """Support ticket metadata."""

    ticket_id: str
    priority: TicketPriority
    estimated_resolution: str


class FAQItem(BaseModel):
    """Help article suggested alongside an escalation."""

    id: str
    question: str
    answer: str
    category: ErrorCategory
    helpful_count: int = 0


class SupportEscalation(BaseModel):
    """Payload for handing an error over to human support."""

    error_id: str
    error_code: str
    category: ErrorCategory
    severity: ErrorSeverity
    platform_area: PlatformArea
    user_context: UserContext
    user_message: str
    contextual_note: Optional[str] = None
    level: int
    trigger: EscalationTrigger
    channels: List[SupportChannelOption]
    selected_channel: SupportChannelType
    ticket: TicketInfo
    message: str
    email_subject: str
    email_body: str
    faqs: List[FAQItem] = []
    frustration_score: float = 0.0
    error_rate: float = 0.0
    created_at: datetime
