"""Error record data models."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator
from typing_extensions import Annotated

from .taxonomy import (
    ErrorCategory,
    ErrorSeverity,
    PlatformArea,
    RecoveryStrategy,
    UserContext,
    can_auto_recover,
    escalation_level_for,
    severity_for,
    strategies_for,
)


class NetworkDetails(BaseModel):
    """Extra fields for connectivity failures."""

    kind: Literal["network"] = "network"
    connection_type: str = "unknown"  # wifi, cellular, ethernet, unknown
    is_offline: bool = False
    last_successful_request: Optional[datetime] = None
    estimated_recovery_time: Optional[float] = None  # seconds


class AuthenticationDetails(BaseModel):
    """Extra fields for session and credential failures."""

    kind: Literal["authentication"] = "authentication"
    auth_type: str = "session"  # login, session, token, verification
    session_expired: bool = False
    can_auto_renew: bool = False
    requires_user_action: bool = True
    redirect_url: Optional[str] = "/auth/login"


class PaymentDetails(BaseModel):
    """Extra fields for checkout and payment failures."""

    kind: Literal["payment"] = "payment"
    payment_method: str = "mercadopago"
    amount: Optional[float] = None
    currency: str = "ARS"
    payment_id: Optional[str] = None
    transaction_id: Optional[str] = None
    decline_reason: Optional[str] = None
    alternative_methods: List[str] = ["mercadopago", "credit_card", "bank_transfer"]
    can_retry_payment: bool = True


class FileUploadDetails(BaseModel):
    """Extra fields for upload failures."""

    kind: Literal["file_upload"] = "file_upload"
    file_name: str
    file_size: int = 0
    file_type: Optional[str] = None
    upload_type: str = "portfolio_image"
    failure_reason: Optional[str] = None  # size_limit, type_not_allowed, corrupted, network, server
    max_file_size: int = 5_000_000
    allowed_types: List[str] = ["image/jpeg", "image/png", "application/pdf"]


class FieldError(BaseModel):
    """Single form field failure."""

    field: str
    rule: str
    message: str
    value: Any = None


class ValidationDetails(BaseModel):
    """Extra fields for form validation failures."""

    kind: Literal["validation"] = "validation"
    field_errors: List[FieldError] = []
    form_id: Optional[str] = None
    can_auto_correct: bool = False
    suggested_values: Dict[str, Any] = {}


class BookingDetails(BaseModel):
    """Extra fields for booking flow failures."""

    kind: Literal["booking"] = "booking"
    booking_id: Optional[int] = None
    service_id: Optional[int] = None
    booking_stage: str = "creation"  # creation, confirmation, payment, scheduling, completion
    conflict_reason: Optional[str] = None


ErrorDetails = Annotated[
    Union[
        NetworkDetails,
        AuthenticationDetails,
        PaymentDetails,
        FileUploadDetails,
        ValidationDetails,
        BookingDetails,
    ],
    Field(discriminator="kind"),
]


class RawFailure(BaseModel):
    """Unclassified failure as reported by a feature boundary."""

    message: str = ""
    error_type: Optional[str] = None
    reason: Optional[str] = None  # catalog failure reason, e.g. session_expired
    http_status: Optional[int] = None
    api_endpoint: Optional[str] = None
    category: Optional[ErrorCategory] = None
    technical_details: Optional[str] = None
    details: Optional[ErrorDetails] = None

    @classmethod
    def from_exception(cls, error: BaseException) -> "RawFailure":
        """Build a raw failure from an exception, keeping its type name."""
        status = getattr(error, "status_code", None) or getattr(error, "status", None)
        return cls(
            message=str(error),
            error_type=type(error).__name__,
            http_status=status if isinstance(status, int) else None,
            technical_details=f"{type(error).__name__}: {error}",
        )


class AmbientContext(BaseModel):
    """Caller context attached to a report."""

    user_context: UserContext = UserContext.GUEST
    platform_area: Optional[PlatformArea] = None
    path: Optional[str] = None  # route path used to infer the area
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    category: Optional[ErrorCategory] = None
    operation_key: Optional[str] = None


class ErrorRecord(BaseModel):
    """Classified, structured representation of a failure."""

    id: str
    code: str
    fingerprint: str
    operation_key: str
    category: ErrorCategory
    severity: ErrorSeverity
    user_context: UserContext
    platform_area: PlatformArea
    user_id: Optional[int] = None
    session_id: Optional[str] = None
    timestamp: datetime
    message: str
    user_message: str
    technical_details: Optional[str] = None
    http_status: Optional[int] = None
    api_endpoint: Optional[str] = None
    recovery_strategy: List[RecoveryStrategy] = []
    can_auto_recover: bool
    escalation_level: int = Field(ge=0, le=3)
    retry_count: int = 0
    max_retries: int = 3
    details: Optional[ErrorDetails] = None

    @model_validator(mode="after")
    def _check_policy(self) -> "ErrorRecord":
        if self.severity != severity_for(self.category):
            raise ValueError(f"severity {self.severity.value} does not match category {self.category.value}")
        if self.can_auto_recover != can_auto_recover(self.category):
            raise ValueError(f"can_auto_recover does not match category {self.category.value}")
        if self.escalation_level != escalation_level_for(self.category):
            raise ValueError(f"escalation_level does not match category {self.category.value}")

        allowed = set(strategies_for(self.category)) | {RecoveryStrategy.OFFLINE_MODE}
        unexpected = [s.value for s in self.recovery_strategy if s not in allowed]
        if unexpected:
            raise ValueError(f"strategies {unexpected} not allowed for category {self.category.value}")

        if self.details is not None and self.details.kind != self.category.value:
            raise ValueError(f"details kind {self.details.kind} does not match category {self.category.value}")
        return self

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries
