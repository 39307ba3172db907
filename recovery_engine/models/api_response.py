"""API request and response data models."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from .connectivity import ConnectivityState
from .error import AmbientContext, ErrorDetails, ErrorRecord
from .escalation import EscalationTrigger, SupportEscalation
from .taxonomy import ErrorCategory


class PresentationMode(str, Enum):
    """Where the client surfaces an error."""

    INLINE = "inline"
    GLOBAL = "global"


class Presentation(BaseModel):
    """How the client should present the current error."""

    mode: PresentationMode
    actions: List[str] = []
    show_escalation: bool = False


class RetryState(str, Enum):
    """Retry scheduler lifecycle state."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    SUSPENDED = "suspended"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"


class RecoverySnapshot(BaseModel):
    """Outbound view of the orchestrator state."""

    current_error: Optional[ErrorRecord] = None
    is_recovering: bool = False
    connectivity: ConnectivityState
    error_rate: float = 0.0
    frustration_score: float = 0.0
    offline_mode: bool = False
    retry_state: Optional[RetryState] = None
    retry_countdown: Optional[float] = None
    presentation: Optional[Presentation] = None
    last_escalation: Optional[SupportEscalation] = None
    parked_count: int = 0


class ReportRequest(BaseModel):
    """Failure reported over HTTP."""

    message: str = ""
    error_type: Optional[str] = None
    reason: Optional[str] = None
    http_status: Optional[int] = None
    api_endpoint: Optional[str] = None
    category: Optional[ErrorCategory] = None
    technical_details: Optional[str] = None
    details: Optional[ErrorDetails] = None
    context: AmbientContext = AmbientContext()


class ConnectivitySignal(BaseModel):
    """Platform connectivity signal."""

    online: Optional[bool] = None
    rtt_ms: Optional[float] = None
    downlink_mbps: Optional[float] = None
    effective_type: Optional[str] = None


class EscalateRequest(BaseModel):
    """Manual escalation request."""

    trigger: EscalationTrigger = EscalationTrigger.MANUAL


class RetryResponse(BaseModel):
    """Outcome of a manual retry."""

    success: bool
    retry_count: int
    error_id: str


class ActionsResponse(BaseModel):
    """Recommended actions for an error."""

    error_id: str
    actions: List[str]
