"""Error taxonomy enums and the fixed per-category recovery policy."""

from enum import Enum
from typing import Dict, FrozenSet, List


class ErrorCategory(str, Enum):
    """Functional class of a failure."""

    NETWORK = "network"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    PAYMENT = "payment"
    FILE_UPLOAD = "file_upload"
    CHAT = "chat"
    BOOKING = "booking"
    SUBSCRIPTION = "subscription"
    SYSTEM = "system"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """Severity of a classified failure, ordered low to critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    ErrorSeverity.LOW: 1,
    ErrorSeverity.MEDIUM: 2,
    ErrorSeverity.HIGH: 3,
    ErrorSeverity.CRITICAL: 4,
}


class UserContext(str, Enum):
    """Role active when the failure happened."""

    GUEST = "guest"
    EXPLORADOR = "explorador"  # consumer
    PROVIDER = "as"  # service provider
    ADMIN = "admin"


class PlatformArea(str, Enum):
    """Functional area of the marketplace client."""

    AUTHENTICATION = "authentication"
    DASHBOARD = "dashboard"
    MARKETPLACE = "marketplace"
    SERVICES = "services"
    CHAT = "chat"
    PAYMENTS = "payments"
    PORTFOLIO = "portfolio"
    BOOKING = "booking"
    PROFILE = "profile"
    SEARCH = "search"
    REVIEWS = "reviews"
    CONFIGURATION = "configuration"
    VERIFICATION = "verification"
    SUBSCRIPTION = "subscription"
    SYSTEM = "system"


class RecoveryStrategy(str, Enum):
    """Remediation approach offered for a failure."""

    RETRY = "retry"
    RELOAD = "reload"
    REDIRECT = "redirect"
    MANUAL = "manual"
    CONTACT_SUPPORT = "contact_support"
    OFFLINE_MODE = "offline_mode"
    AUTO_FIX = "auto_fix"
    FALLBACK = "fallback"


class ResolutionMethod(str, Enum):
    """How a health window entry was resolved."""

    MANUAL_CLEAR = "manual_clear"
    RETRY_SUCCESS = "retry_success"
    ESCALATION = "escalation"


# Fixed classification policy. Severity, auto recovery and escalation level
# are functions of the category alone.
SEVERITY_BY_CATEGORY: Dict[ErrorCategory, ErrorSeverity] = {
    ErrorCategory.PAYMENT: ErrorSeverity.CRITICAL,
    ErrorCategory.AUTHENTICATION: ErrorSeverity.CRITICAL,
    ErrorCategory.BOOKING: ErrorSeverity.HIGH,
    ErrorCategory.FILE_UPLOAD: ErrorSeverity.HIGH,
    ErrorCategory.CHAT: ErrorSeverity.MEDIUM,
    ErrorCategory.VALIDATION: ErrorSeverity.MEDIUM,
}

AUTO_RECOVERABLE_CATEGORIES: FrozenSet[ErrorCategory] = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.SERVER,
    ErrorCategory.CHAT,
})

ESCALATION_LEVEL_BY_CATEGORY: Dict[ErrorCategory, int] = {
    ErrorCategory.PAYMENT: 3,
    ErrorCategory.AUTHENTICATION: 3,
    ErrorCategory.BOOKING: 2,
    ErrorCategory.AUTHORIZATION: 2,
    ErrorCategory.VALIDATION: 1,
    ErrorCategory.FILE_UPLOAD: 1,
}

STRATEGIES_BY_CATEGORY: Dict[ErrorCategory, List[RecoveryStrategy]] = {
    ErrorCategory.NETWORK: [RecoveryStrategy.RETRY, RecoveryStrategy.RELOAD, RecoveryStrategy.OFFLINE_MODE],
    ErrorCategory.AUTHENTICATION: [RecoveryStrategy.REDIRECT, RecoveryStrategy.MANUAL],
    ErrorCategory.AUTHORIZATION: [RecoveryStrategy.CONTACT_SUPPORT, RecoveryStrategy.REDIRECT],
    ErrorCategory.VALIDATION: [RecoveryStrategy.MANUAL, RecoveryStrategy.AUTO_FIX],
    ErrorCategory.PAYMENT: [RecoveryStrategy.RETRY, RecoveryStrategy.MANUAL, RecoveryStrategy.CONTACT_SUPPORT],
    ErrorCategory.FILE_UPLOAD: [RecoveryStrategy.RETRY, RecoveryStrategy.MANUAL],
    ErrorCategory.CHAT: [RecoveryStrategy.RETRY, RecoveryStrategy.RELOAD],
    ErrorCategory.BOOKING: [RecoveryStrategy.RETRY, RecoveryStrategy.MANUAL, RecoveryStrategy.FALLBACK],
    ErrorCategory.SERVER: [RecoveryStrategy.RETRY, RecoveryStrategy.RELOAD, RecoveryStrategy.CONTACT_SUPPORT],
    ErrorCategory.CLIENT: [RecoveryStrategy.RELOAD, RecoveryStrategy.RETRY],
}

DEFAULT_STRATEGIES: List[RecoveryStrategy] = [RecoveryStrategy.RETRY, RecoveryStrategy.CONTACT_SUPPORT]


def severity_for(category: ErrorCategory) -> ErrorSeverity:
    """Severity policy for a category."""
    return SEVERITY_BY_CATEGORY.get(category, ErrorSeverity.LOW)


def can_auto_recover(category: ErrorCategory) -> bool:
    """Whether failures of this category are retried without the user."""
    return category in AUTO_RECOVERABLE_CATEGORIES


def escalation_level_for(category: ErrorCategory) -> int:
    """Escalation level (0 self-heals, 3 immediate human contact)."""
    return ESCALATION_LEVEL_BY_CATEGORY.get(category, 0)


def strategies_for(category: ErrorCategory) -> List[RecoveryStrategy]:
    """Candidate strategies for a category, before connectivity filtering."""
    return list(STRATEGIES_BY_CATEGORY.get(category, DEFAULT_STRATEGIES))
