"""
Error classification.

Turns a raw failure (exception, string, mapping or RawFailure) plus the
caller's ambient context into a fully populated ErrorRecord. Classification
is pure: no I/O, no shared state, and it never raises.
"""

import hashlib
import logging
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from pydantic import ValidationError

from recovery_engine.models.connectivity import ConnectivityState, ConnectivityStatus
from recovery_engine.models.error import (
    AmbientContext,
    ErrorRecord,
    FileUploadDetails,
    NetworkDetails,
    RawFailure,
)
from recovery_engine.models.taxonomy import (
    ErrorCategory,
    PlatformArea,
    UserContext,
    can_auto_recover,
    escalation_level_for,
    severity_for,
)
from recovery_engine.services.message_catalog import MessageCatalog, get_message_catalog
from recovery_engine.services.strategy_selector import select_strategies

logger = logging.getLogger(__name__)


STATUS_CATEGORIES: Dict[int, ErrorCategory] = {
    0: ErrorCategory.NETWORK,
    408: ErrorCategory.NETWORK,
    504: ErrorCategory.NETWORK,
    401: ErrorCategory.AUTHENTICATION,
    403: ErrorCategory.AUTHORIZATION,
    402: ErrorCategory.PAYMENT,
    400: ErrorCategory.VALIDATION,
    422: ErrorCategory.VALIDATION,
    413: ErrorCategory.FILE_UPLOAD,
    415: ErrorCategory.FILE_UPLOAD,
}

NETWORK_EXCEPTION_TYPES = frozenset({
    "ConnectionError",
    "ConnectionRefusedError",
    "ConnectionResetError",
    "ConnectionAbortedError",
    "TimeoutError",
    "NetworkError",
    "ClientConnectorError",
    "ConnectError",
    "ConnectTimeout",
    "ReadTimeout",
    "gaierror",
})

CLIENT_EXCEPTION_TYPES = frozenset({
    "TypeError",
    "AttributeError",
    "NameError",
    "KeyError",
    "IndexError",
    "ReferenceError",
    "SyntaxError",
})

# Checked in order; each keyword matches at the start of a word.
KEYWORD_RULES: List[Tuple[ErrorCategory, Tuple[str, ...]]] = [
    (ErrorCategory.NETWORK, (
        "network", "fetch", "connection", "timeout", "timed out", "offline",
        "econnrefused", "conexión", "conexion", "internet",
    )),
    (ErrorCategory.AUTHORIZATION, (
        "permission", "forbidden", "access denied", "not allowed", "permiso",
    )),
    (ErrorCategory.AUTHENTICATION, (
        "unauthorized", "auth", "token", "session", "login", "credential",
        "sesión", "sesion",
    )),
    (ErrorCategory.VALIDATION, (
        "validation", "required", "invalid", "inválid", "obligatori",
    )),
    (ErrorCategory.PAYMENT, (
        "payment", "mercadopago", "transaction", "card", "pago", "tarjeta",
    )),
    (ErrorCategory.SUBSCRIPTION, (
        "subscription", "suscripci", "premium",
    )),
    (ErrorCategory.FILE_UPLOAD, (
        "upload", "file", "image", "archivo", "imagen",
    )),
    (ErrorCategory.CHAT, (
        "chat", "websocket", "mensaje",
    )),
    (ErrorCategory.BOOKING, (
        "booking", "reservation", "reserva", "solicitud",
    )),
]

_KEYWORD_PATTERNS = [
    (category, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + ")"))
    for category, keywords in KEYWORD_RULES
]

# Failure reasons recognized from the message, per category
REASON_RULES: Dict[ErrorCategory, List[Tuple[str, Tuple[str, ...]]]] = {
    ErrorCategory.NETWORK: [
        ("timeout", ("timeout", "timed out")),
        ("offline", ("offline", "sin conexión")),
        ("server_unreachable", ("unreachable", "econnrefused", "refused")),
    ],
    ErrorCategory.AUTHENTICATION: [
        ("session_expired", ("expired", "expiró", "expiro")),
        ("invalid_credentials", ("invalid credentials", "wrong password", "incorrect password")),
        ("account_locked", ("locked", "bloquead")),
        ("verification_required", ("verify", "verification", "verific")),
    ],
    ErrorCategory.PAYMENT: [
        ("card_declined", ("declined", "rechazad")),
        ("insufficient_funds", ("insufficient", "fondos")),
        ("mercadopago_error", ("mercadopago",)),
    ],
    ErrorCategory.FILE_UPLOAD: [
        ("size_too_large", ("too large", "size", "muy grande")),
        ("invalid_format", ("format", "type not allowed", "formato")),
        ("corrupted_file", ("corrupt", "dañado")),
    ],
    ErrorCategory.BOOKING: [
        ("time_conflict", ("conflict", "no longer available", "horario")),
        ("provider_unavailable", ("provider unavailable", "profesional")),
    ],
    ErrorCategory.VALIDATION: [
        ("invalid_email", ("email",)),
        ("password_weak", ("password",)),
        ("phone_invalid", ("phone", "teléfono")),
        ("required_field", ("required", "obligatori")),
    ],
}

STATUS_REASONS: Dict[int, str] = {
    408: "timeout",
    504: "timeout",
    413: "size_too_large",
    415: "invalid_format",
}

FILE_FAILURE_REASONS = {
    "size_limit": "size_too_large",
    "type_not_allowed": "invalid_format",
    "corrupted": "corrupted_file",
    "network": "upload_failed",
    "server": "upload_failed",
}

# Route fragments mapped to platform areas, checked in order
AREA_ROUTES: List[Tuple[Tuple[str, ...], PlatformArea]] = [
    (("/dashboard",), PlatformArea.DASHBOARD),
    (("/servicios", "/services"), PlatformArea.SERVICES),
    (("/portafolio", "/portfolio"), PlatformArea.PORTFOLIO),
    (("/chat",), PlatformArea.CHAT),
    (("/pago", "/payment"), PlatformArea.PAYMENTS),
    (("/reserva", "/booking"), PlatformArea.BOOKING),
    (("/perfil", "/profile"), PlatformArea.PROFILE),
    (("/auth", "/login"), PlatformArea.AUTHENTICATION),
    (("/buscar", "/search"), PlatformArea.SEARCH),
    (("/marketplace",), PlatformArea.MARKETPLACE),
    (("/calificaciones", "/reviews"), PlatformArea.REVIEWS),
    (("/configuracion", "/config"), PlatformArea.CONFIGURATION),
    (("/verificacion", "/verification"), PlatformArea.VERIFICATION),
    (("/suscripcion", "/subscription"), PlatformArea.SUBSCRIPTION),
]

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _normalize_message(message: str) -> str:
    text = re.sub(r"\d+", "#", message.lower())
    return re.sub(r"\s+", " ", text).strip()


def _type_names(error: BaseException) -> Set[str]:
    return {cls.__name__ for cls in type(error).__mro__}


def _format_size(size_bytes: int) -> str:
    return f"{size_bytes / 1_000_000:g}MB"


def _format_types(types: Iterable[str]) -> str:
    return ", ".join(t.split("/")[-1].upper().replace("JPEG", "JPG") for t in types)


def infer_platform_area(context: AmbientContext) -> PlatformArea:
    """Explicit area, otherwise derived from the route path, otherwise system."""
    if context.platform_area is not None:
        return context.platform_area

    if context.path:
        path = context.path.lower()
        for fragments, area in AREA_ROUTES:
            if any(fragment in path for fragment in fragments):
                return area

    return PlatformArea.SYSTEM


def fingerprint_for(category: ErrorCategory, message: str, area: PlatformArea) -> str:
    """Stable hash of the category, normalized message and area."""
    key = f"{category.value}|{_normalize_message(message)}|{area.value}"
    return hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]


class ErrorClassifier:
    """
    Classifies raw failures into ErrorRecords.

    Args:
        catalog: Message catalog for user messages
        max_retries: Default retry budget placed on every record
    """

    def __init__(self, catalog: Optional[MessageCatalog] = None, max_retries: int = 3):
        self.catalog = catalog or get_message_catalog()
        self.max_retries = max_retries

    def classify(
        self,
        raw_failure: Any,
        context: Optional[AmbientContext] = None,
        connectivity: Optional[ConnectivityState] = None,
        now: Optional[datetime] = None,
    ) -> ErrorRecord:
        """
        Classify a raw failure.

        Args:
            raw_failure: Exception, message string, mapping or RawFailure
            context: Ambient context of the failing call
            connectivity: Current link state, if known
            now: Timestamp to stamp on the record

        Returns:
            Fully populated ErrorRecord. Never raises; a failure inside
            classification yields a best-effort unknown/low record.
        """
        context = context or AmbientContext()
        now = now or datetime.now(timezone.utc)

        try:
            raw, type_names = self._coerce(raw_failure)
            return self._build(raw, type_names, context, connectivity, now)
        except Exception as e:
            logger.error(f"Classification failed, falling back to unknown: {e}", exc_info=True)
            return self._fallback(raw_failure, context, now)

    # ========== Inference ==========

    def _coerce(self, raw_failure: Any) -> Tuple[RawFailure, Set[str]]:
        if isinstance(raw_failure, RawFailure):
            names = {raw_failure.error_type} if raw_failure.error_type else set()
            return raw_failure, names

        if isinstance(raw_failure, BaseException):
            return RawFailure.from_exception(raw_failure), _type_names(raw_failure)

        if isinstance(raw_failure, Mapping):
            try:
                raw = RawFailure(**raw_failure)
            except ValidationError:
                raw = RawFailure(message=str(raw_failure.get("message", "")))
            names = {raw.error_type} if raw.error_type else set()
            return raw, names

        if raw_failure is None:
            return RawFailure(), set()

        return RawFailure(message=str(raw_failure)), set()

    def infer_category(
        self,
        raw: RawFailure,
        type_names: Set[str],
        context: AmbientContext,
        connectivity: Optional[ConnectivityState] = None,
    ) -> ErrorCategory:
        """
        Category inference: explicit hint, HTTP status, exception type,
        message keywords, offline link, then unknown.
        """
        if context.category is not None:
            return context.category
        if raw.category is not None:
            return raw.category
        if raw.details is not None:
            return ErrorCategory(raw.details.kind)

        if raw.http_status is not None:
            status = raw.http_status
            if status in STATUS_CATEGORIES:
                return STATUS_CATEGORIES[status]
            if 500 <= status <= 599:
                return ErrorCategory.SERVER

        if type_names & NETWORK_EXCEPTION_TYPES:
            return ErrorCategory.NETWORK
        if "PermissionError" in type_names:
            return ErrorCategory.AUTHORIZATION
        if type_names & CLIENT_EXCEPTION_TYPES:
            return ErrorCategory.CLIENT

        message = raw.message.lower()
        for category, pattern in _KEYWORD_PATTERNS:
            if pattern.search(message):
                return category

        if connectivity is not None and connectivity.status == ConnectivityStatus.OFFLINE:
            return ErrorCategory.NETWORK

        return ErrorCategory.UNKNOWN

    def infer_reason(
        self,
        category: ErrorCategory,
        raw: RawFailure,
        connectivity: Optional[ConnectivityState] = None,
    ) -> Optional[str]:
        """Failure reason used for the most specific catalog message."""
        if raw.reason and self.catalog.has_reason(category, raw.reason):
            return raw.reason

        details = raw.details
        if details is not None:
            reason = None
            if details.kind == "file_upload" and details.failure_reason:
                reason = FILE_FAILURE_REASONS.get(details.failure_reason)
            elif details.kind == "authentication" and details.session_expired:
                reason = "session_expired"
            elif details.kind == "payment" and details.decline_reason:
                reason = details.decline_reason
            elif details.kind == "booking" and details.conflict_reason:
                reason = details.conflict_reason
            elif details.kind == "network" and details.is_offline:
                reason = "offline"
            if reason and self.catalog.has_reason(category, reason):
                return reason

        if raw.http_status in STATUS_REASONS:
            reason = STATUS_REASONS[raw.http_status]
            if self.catalog.has_reason(category, reason):
                return reason

        message = raw.message.lower()
        for reason, keywords in REASON_RULES.get(category, []):
            if any(k in message for k in keywords):
                return reason

        if category == ErrorCategory.NETWORK and connectivity is not None:
            if connectivity.status == ConnectivityStatus.OFFLINE:
                return "offline"
            if connectivity.status == ConnectivityStatus.SLOW:
                return "slow"

        return None

    # ========== Construction ==========

    def _message_params(self, raw: RawFailure) -> Dict[str, Any]:
        details = raw.details
        if isinstance(details, FileUploadDetails):
            return {
                "max_size": _format_size(details.max_file_size),
                "allowed_formats": _format_types(details.allowed_types),
            }
        defaults = FileUploadDetails(file_name="")
        return {
            "max_size": _format_size(defaults.max_file_size),
            "allowed_formats": _format_types(defaults.allowed_types),
        }

    def _build(
        self,
        raw: RawFailure,
        type_names: Set[str],
        context: AmbientContext,
        connectivity: Optional[ConnectivityState],
        now: datetime,
    ) -> ErrorRecord:
        category = self.infer_category(raw, type_names, context, connectivity)
        area = infer_platform_area(context)
        reason = self.infer_reason(category, raw, connectivity)

        details = raw.details
        if details is not None and details.kind != category.value:
            logger.debug(f"Dropping {details.kind} details for {category.value} record")
            details = None
        if details is None and category == ErrorCategory.NETWORK:
            offline = connectivity is not None and connectivity.status == ConnectivityStatus.OFFLINE
            details = NetworkDetails(
                is_offline=offline,
                last_successful_request=connectivity.last_successful_request if connectivity else None,
            )

        fingerprint = fingerprint_for(category, raw.message, area)

        return ErrorRecord(
            id=f"err_{uuid.uuid4().hex[:12]}",
            code=self._error_code(category, fingerprint, now),
            fingerprint=fingerprint,
            operation_key=context.operation_key or fingerprint,
            category=category,
            severity=severity_for(category),
            user_context=context.user_context,
            platform_area=area,
            user_id=context.user_id,
            session_id=context.session_id,
            timestamp=now,
            message=raw.message,
            user_message=self.catalog.user_message(
                category, context.user_context, reason, self._message_params(raw)
            ),
            technical_details=raw.technical_details,
            http_status=raw.http_status,
            api_endpoint=raw.api_endpoint,
            recovery_strategy=select_strategies(category, connectivity),
            can_auto_recover=can_auto_recover(category),
            escalation_level=escalation_level_for(category),
            max_retries=self.max_retries,
            details=details,
        )

    @staticmethod
    def _error_code(category: ErrorCategory, fingerprint: str, now: datetime) -> str:
        short_hash = _to_base36(int(fingerprint[:8], 16))
        timestamp = _to_base36(int(now.timestamp() * 1000))
        return f"ERR_{category.value[:3].upper()}_{short_hash}_{timestamp}".upper()

    def _fallback(self, raw_failure: Any, context: AmbientContext, now: datetime) -> ErrorRecord:
        message = getattr(raw_failure, "message", None) if raw_failure is not None else ""
        if not isinstance(message, str):
            message = type(raw_failure).__name__
        category = ErrorCategory.UNKNOWN
        area = context.platform_area or PlatformArea.SYSTEM
        user_context = context.user_context if isinstance(context.user_context, UserContext) else UserContext.GUEST
        fingerprint = fingerprint_for(category, message, area)
        return ErrorRecord(
            id=f"err_{uuid.uuid4().hex[:12]}",
            code=self._error_code(category, fingerprint, now),
            fingerprint=fingerprint,
            operation_key=context.operation_key or fingerprint,
            category=category,
            severity=severity_for(category),
            user_context=user_context,
            platform_area=area,
            timestamp=now,
            message=message,
            user_message=self.catalog.user_message(category),
            recovery_strategy=select_strategies(category),
            can_auto_recover=can_auto_recover(category),
            escalation_level=escalation_level_for(category),
            max_retries=self.max_retries,
        )
