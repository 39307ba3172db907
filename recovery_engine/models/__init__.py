"""Data models for the marketplace error recovery engine."""

from .api_response import (
    ActionsResponse,
    ConnectivitySignal,
    EscalateRequest,
    Presentation,
    PresentationMode,
    RecoverySnapshot,
    ReportRequest,
    RetryResponse,
    RetryState,
)
from .connectivity import ConnectivityState, ConnectivityStatus, OfflineFlag
from .error import (
    AmbientContext,
    AuthenticationDetails,
    BookingDetails,
    ErrorDetails,
    ErrorRecord,
    FieldError,
    FileUploadDetails,
    NetworkDetails,
    PaymentDetails,
    RawFailure,
    ValidationDetails,
)
from .escalation import (
    EscalationTrigger,
    FAQItem,
    SupportChannelOption,
    SupportChannelType,
    SupportEscalation,
    TicketInfo,
    TicketPriority,
)
from .health import HealthEntry, HealthSnapshot
from .taxonomy import (
    ErrorCategory,
    ErrorSeverity,
    PlatformArea,
    RecoveryStrategy,
    ResolutionMethod,
    UserContext,
)

__all__ = [
    # Taxonomy
    "ErrorCategory",
    "ErrorSeverity",
    "UserContext",
    "PlatformArea",
    "RecoveryStrategy",
    "ResolutionMethod",
    # Error models
    "ErrorRecord",
    "ErrorDetails",
    "RawFailure",
    "AmbientContext",
    "NetworkDetails",
    "AuthenticationDetails",
    "PaymentDetails",
    "FileUploadDetails",
    "ValidationDetails",
    "FieldError",
    "BookingDetails",
    # Connectivity models
    "ConnectivityStatus",
    "ConnectivityState",
    "OfflineFlag",
    # Health models
    "HealthEntry",
    "HealthSnapshot",
    # Escalation models
    "EscalationTrigger",
    "SupportChannelType",
    "SupportChannelOption",
    "TicketPriority",
    "TicketInfo",
    "FAQItem",
    "SupportEscalation",
    # API models
    "ReportRequest",
    "ConnectivitySignal",
    "EscalateRequest",
    "RetryResponse",
    "ActionsResponse",
    "RetryState",
    "Presentation",
    "PresentationMode",
    "RecoverySnapshot",
]
