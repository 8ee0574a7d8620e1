"""Review request routes — customer events, drip status and drip creation."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from rankitpro.domain.models import CheckIn, ReviewRequestStatus
from rankitpro.domain.schemas import DripEventIn, DripStateResponse, ReviewSubmissionIn
from rankitpro.infra.database import get_db
from rankitpro.services.drip_engine import ReviewDripEngine
from rankitpro.services.drip_events import DripEventService, ReviewAfterUnsubscribeError
from rankitpro.services.drip_settings_service import DripSettingsService
from rankitpro.services.review_request_service import (
    ReviewRequestNotFoundError,
    ReviewRequestService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/review-requests", tags=["review-requests"])
check_in_router = APIRouter(prefix="/api/check-ins", tags=["review-requests"])


async def _state_response(db: AsyncSession, state: ReviewRequestStatus) -> DripStateResponse:
    config = await DripSettingsService(db).get_company_settings(state.company_id, create=False)
    stage, due_at = ReviewDripEngine(db).describe(state, config)
    response = DripStateResponse.model_validate(state)
    response.next_stage = stage.value if stage else None
    response.next_due_at = due_at
    return response


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


@router.get("/{request_id}/drip", response_model=DripStateResponse)
async def get_drip_state(request_id: str, db: AsyncSession = Depends(get_db)):
    """Drip progress for a review request."""
    try:
        state = await ReviewRequestService(db).get_state(request_id)
    except ReviewRequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return await _state_response(db, state)


# ---------------------------------------------------------------------------
# Events by request id
# ---------------------------------------------------------------------------


@router.post("/{request_id}/click", response_model=DripStateResponse)
async def link_clicked(request_id: str, body: DripEventIn | None = None, db: AsyncSession = Depends(get_db)):
    """Record a click on the review link."""
    try:
        state = await DripEventService(db).record_link_click(
            request_id, body.occurred_at if body else None
        )
    except ReviewRequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return await _state_response(db, state)


@router.post("/{request_id}/submit", response_model=DripStateResponse)
async def review_submitted(request_id: str, body: ReviewSubmissionIn, db: AsyncSession = Depends(get_db)):
    """Record a submitted review and complete the drip."""
    try:
        state = await DripEventService(db).record_review_submission(
            request_id, body.rating, body.occurred_at, body.feedback
        )
    except ReviewRequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReviewAfterUnsubscribeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return await _state_response(db, state)


@router.post("/{request_id}/unsubscribe", response_model=DripStateResponse)
async def unsubscribe(request_id: str, body: DripEventIn | None = None, db: AsyncSession = Depends(get_db)):
    """Stop all further drip messages for a review request."""
    try:
        state = await DripEventService(db).record_unsubscribe(
            request_id, body.occurred_at if body else None
        )
    except ReviewRequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return await _state_response(db, state)


# ---------------------------------------------------------------------------
# Events by public token (links in emails / texts)
# ---------------------------------------------------------------------------


@router.post("/token/{token}/click")
async def link_clicked_by_token(token: str, db: AsyncSession = Depends(get_db)):
    """Record a review-link click from the public review page."""
    try:
        await DripEventService(db).record_link_click(token=token)
    except ReviewRequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True}


@router.post("/token/{token}/submit")
async def review_submitted_by_token(token: str, body: ReviewSubmissionIn, db: AsyncSession = Depends(get_db)):
    """Record a review submitted from the public review page."""
    try:
        await DripEventService(db).record_review_submission(
            rating=body.rating, submit_time=body.occurred_at, feedback=body.feedback, token=token
        )
    except ReviewRequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ReviewAfterUnsubscribeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"ok": True}


@router.post("/token/{token}/unsubscribe")
async def unsubscribe_by_token(token: str, db: AsyncSession = Depends(get_db)):
    """Unsubscribe link target."""
    try:
        await DripEventService(db).record_unsubscribe(token=token)
    except ReviewRequestNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"ok": True}


# ---------------------------------------------------------------------------
# Drip creation from a service visit
# ---------------------------------------------------------------------------


@check_in_router.post("/{check_in_id}/review-request")
async def create_review_request(check_in_id: str, db: AsyncSession = Depends(get_db)):
    """Issue a review request for a check-in, subject to the company's targeting rules."""
    check_in = await db.get(CheckIn, check_in_id)
    if check_in is None:
        raise HTTPException(status_code=404, detail="Check-in not found")

    state = await ReviewDripEngine(db).create_from_check_in(check_in)
    if state is None:
        return {"ok": True, "created": False, "review_request_id": None}

    return {
        "ok": True,
        "created": True,
        "review_request_id": state.review_request_id,
        "drip": (await _state_response(db, state)).model_dump(mode="json"),
    }
