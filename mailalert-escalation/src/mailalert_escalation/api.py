"""
This module defines the FastAPI routes of the escalation service.

``get_router`` binds every endpoint to an ``EscalationService`` instance so the
router can be mounted by the app factory or by tests with a service wired to
fakeredis and an in-memory calendar.
"""
from fastapi import APIRouter, HTTPException, Query

from mailalert_contracts import ChainState, IngestResult, TickReport

from .calendar_surface import CalendarSurfaceError
from .schemas import ChainListResponse, IngestRequest, PurgeResponse
from .service import EscalationService


def get_router(service: EscalationService) -> APIRouter:
    """
    Creates the API router for the escalation service.

    Args:
        service: The service every endpoint delegates to.

    Returns:
        A configured ``APIRouter``.
    """
    router = APIRouter()

    @router.get("/health")
    def health_check():
        """Provides a simple health check endpoint for the service."""
        return {"status": "healthy"}

    @router.post("/notifications", response_model=IngestResult)
    def ingest_notification(request: IngestRequest):
        """
        Starts the escalation chain for a notification.

        Returns 409 when another invocation holds the run lock and 502 when the
        calendar rejects the first block event.
        """
        try:
            result = service.ingest(request.to_notification(), mode=request.mode)
        except CalendarSurfaceError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        if result is None:
            raise HTTPException(status_code=409, detail="Run lock busy")
        return result

    @router.post("/tick", response_model=TickReport)
    def run_tick():
        """Advances every chain by one step."""
        report = service.run_tick()
        if report is None:
            raise HTTPException(status_code=409, detail="Run lock busy")
        return report

    @router.get("/chains", response_model=ChainListResponse)
    def list_chains():
        chains = service.list_chains()
        return ChainListResponse(chains=chains, total=len(chains))

    @router.get("/chains/{chain_id}", response_model=ChainState)
    def get_chain(chain_id: str):
        chain = service.get_chain(chain_id)
        if chain is None:
            raise HTTPException(status_code=404, detail="Chain not found")
        return chain

    @router.delete("/events/test", response_model=PurgeResponse)
    def purge_test_events(window_days: int = Query(default=180, ge=1, le=3650)):
        """Deletes every TEST-mode event around now."""
        try:
            deleted = service.purge_test_events(window_days=window_days)
        except CalendarSurfaceError as exc:
            raise HTTPException(status_code=502, detail=str(exc))
        if deleted is None:
            raise HTTPException(status_code=409, detail="Run lock busy")
        return PurgeResponse(deleted=deleted, window_days=window_days)

    return router
