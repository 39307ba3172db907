"""Aggregate health data models."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .error import ErrorRecord
from .taxonomy import ResolutionMethod


class HealthEntry(BaseModel):
    """One reported error in the health window."""

    record: ErrorRecord
    recorded_at: float  # monotonic seconds, used for the frustration horizon
    resolved: bool = False
    resolution_method: Optional[ResolutionMethod] = None
    resolved_at: Optional[datetime] = None


class HealthSnapshot(BaseModel):
    """Point in time view of the aggregate health."""

    error_count: int = 0
    success_count: int = 0
    error_rate: float = Field(default=0.0, ge=0.0, le=1.0)
    frustration_score: float = Field(default=0.0, ge=0.0, le=100.0)
    window_size: int = 0
    unresolved_count: int = 0
    recent_errors: List[ErrorRecord] = []
    resolutions: Dict[ResolutionMethod, int] = {}
