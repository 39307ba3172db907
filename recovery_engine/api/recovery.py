"""
Error recovery REST API endpoints.

Thin adapter over the RecoveryOrchestrator contract.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Header, Request

from recovery_engine.config import settings
from recovery_engine.models.api_response import (
    ActionsResponse,
    ConnectivitySignal,
    EscalateRequest,
    RecoverySnapshot,
    ReportRequest,
    RetryResponse,
)
from recovery_engine.models.connectivity import ConnectivityState
from recovery_engine.models.error import ErrorRecord, RawFailure
from recovery_engine.models.escalation import SupportEscalation
from recovery_engine.services.recovery_orchestrator import RecoveryError, RecoveryOrchestrator

logger = logging.getLogger(__name__)


async def verify_api_key(x_api_key: str = Header(None)) -> None:
    """
    Verify API key when one is configured.

    Args:
        x_api_key: API key from request header

    Raises:
        HTTPException: If API key is invalid or missing
    """
    expected_key = settings.api_key
    if not expected_key:
        return

    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")

    if x_api_key != expected_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


def get_orchestrator(request: Request) -> RecoveryOrchestrator:
    """Orchestrator owned by the running application."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Recovery engine not started")
    return orchestrator


router = APIRouter(
    prefix="/api/recovery",
    tags=["recovery"],
    dependencies=[Depends(verify_api_key)],
)


@router.get("", response_model=RecoverySnapshot)
async def get_snapshot(
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> RecoverySnapshot:
    """Current recovery state."""
    return orchestrator.snapshot()


@router.post("/report", response_model=ErrorRecord)
async def report_error(
    payload: ReportRequest,
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> ErrorRecord:
    """
    Report a failure and get its classification.

    Args:
        payload: Raw failure plus ambient context

    Returns:
        Classified error record
    """
    try:
        raw = RawFailure(**payload.model_dump(exclude={"context"}))
        record = await orchestrator.report(raw, payload.context)
        logger.info(f"Reported error {record.id} ({record.category.value})")
        return record

    except Exception as e:
        logger.error(f"Error reporting failure: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/retry", response_model=RetryResponse)
async def retry_current(
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> RetryResponse:
    """
    Retry the current error with its registered recovery action.

    Raises:
        HTTPException: 409 when there is no current error or no action
    """
    try:
        record = orchestrator.current_error
        success = await orchestrator.retry()
        return RetryResponse(success=success, retry_count=record.retry_count, error_id=record.id)

    except RecoveryError as e:
        logger.warning(f"Retry rejected: {e}")
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Error retrying current error: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/clear", response_model=RecoverySnapshot)
async def clear_current(
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> RecoverySnapshot:
    """Dismiss the current error."""
    await orchestrator.clear()
    return orchestrator.snapshot()


@router.post("/escalate", response_model=SupportEscalation)
async def escalate_current(
    payload: EscalateRequest = EscalateRequest(),
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> SupportEscalation:
    """
    Build a support escalation for the current error.

    Raises:
        HTTPException: 409 when there is no current error
    """
    try:
        return await orchestrator.escalate(payload.trigger)

    except RecoveryError as e:
        logger.warning(f"Escalation rejected: {e}")
        raise HTTPException(status_code=409, detail=str(e))


@router.get("/errors/{error_id}/actions", response_model=ActionsResponse)
async def get_recommended_actions(
    error_id: str,
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> ActionsResponse:
    """
    Recommended actions for a known error.

    Raises:
        HTTPException: If the error is not known
    """
    record = orchestrator.find_error(error_id)
    if record is None:
        logger.warning(f"Error not found: {error_id}")
        raise HTTPException(status_code=404, detail=f"Error {error_id} not found")

    return ActionsResponse(error_id=error_id, actions=orchestrator.recommended_actions(record))


@router.post("/connectivity", response_model=ConnectivityState)
async def signal_connectivity(
    signal: ConnectivitySignal,
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> ConnectivityState:
    """Feed a platform connectivity signal."""
    if signal.rtt_ms is not None or signal.downlink_mbps is not None or signal.effective_type is not None:
        orchestrator.update_link_quality(signal.rtt_ms, signal.downlink_mbps, signal.effective_type)
    if signal.online is not None:
        orchestrator.set_online(signal.online)
    return orchestrator.connectivity


@router.post("/success", response_model=RecoverySnapshot)
async def record_success(
    orchestrator: RecoveryOrchestrator = Depends(get_orchestrator),
) -> RecoverySnapshot:
    """Record a successful request."""
    await orchestrator.record_success()
    return orchestrator.snapshot()
