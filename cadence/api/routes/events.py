"""POST /v1/events — platform event ingestion."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from cadence.api.deps import get_dispatcher
from cadence.api.schemas import EventAcceptedResponse, IngestEventRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/events", tags=["events"])


@router.post("", status_code=202, response_model=EventAcceptedResponse, response_model_by_alias=True)
async def ingest_event(body: IngestEventRequest, dispatcher=Depends(get_dispatcher)):
    """Match the event against ACTIVE workflows and start runs.

    Upstream services redeliver on any non-2xx. Runs are keyed on the event
    id, so when matching or enqueueing fails the route answers 503 and lets
    the redelivery start whatever this attempt did not.
    """
    try:
        outcome = await dispatcher.dispatch(body)
    except Exception as exc:
        logger.error("Event ingestion failed id=%s kind=%s publication=%s: %s",
                     body.id, body.kind.value, body.publication_id, exc, exc_info=True)
        raise HTTPException(
            status_code=503,
            detail={"error": "Event could not be processed; retry later", "reason": str(exc)},
            headers={"Retry-After": "30"},
        )
    return EventAcceptedResponse(
        accepted=True,
        mode=outcome["mode"],
        job_id=outcome.get("job_id"),
        run_ids=outcome.get("run_ids", []),
    )


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, dispatcher=Depends(get_dispatcher)):
    """Status of a background event-processing job."""
    return await dispatcher.get_job_status(job_id)
