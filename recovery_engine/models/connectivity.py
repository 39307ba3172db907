"""Connectivity state data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ConnectivityStatus(str, Enum):
    """Quality of the network link."""

    ONLINE = "online"
    OFFLINE = "offline"
    SLOW = "slow"
    UNSTABLE = "unstable"


class ConnectivityState(BaseModel):
    """Current network link status as seen by the monitor."""

    status: ConnectivityStatus = ConnectivityStatus.ONLINE
    rtt_ms: Optional[float] = None
    downlink_mbps: Optional[float] = None
    effective_type: Optional[str] = None  # slow-2g, 2g, 3g, 4g
    quality_known: bool = False
    last_successful_request: Optional[datetime] = None
    changed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_online(self) -> bool:
        return self.status != ConnectivityStatus.OFFLINE


class OfflineFlag(BaseModel):
    """Durable marker that the client entered offline mode."""

    offline: bool = True
    since: datetime
