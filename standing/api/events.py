"""
Standing Engine — Behavior event ingestion

Called by the booking, review and chat backends with a service token
(role=service; admins may post too). Each event bumps raw counters; the
standing recompute runs after the response is sent.

    POST /v1/events/bookings   - A booking finished (completed | cancelled | no_show)
    POST /v1/events/reviews    - A review was left for a user
    POST /v1/events/messages   - A message was (or was not) answered
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel

from standing.security import require_service
from standing.services import Services, get_services

events_router = APIRouter(prefix="/v1/events", tags=["events"])


class BookingEvent(BaseModel):
    user_id: str
    outcome: str
    start_delay_minutes: Optional[float] = None


class ReviewEvent(BaseModel):
    user_id: str
    rating: float


class MessageEvent(BaseModel):
    user_id: str
    responded: bool
    response_minutes: Optional[float] = None


@events_router.post("/bookings", status_code=202)
async def booking_event(
    body: BookingEvent,
    background_tasks: BackgroundTasks,
    caller: dict = Depends(require_service),
    services: Services = Depends(get_services),
):
    counters = services.metrics.record_booking(body.user_id, body.outcome, body.start_delay_minutes)
    background_tasks.add_task(services.standing.recompute, body.user_id)
    return {"accepted": True, "total_bookings": counters.total_bookings}


@events_router.post("/reviews", status_code=202)
async def review_event(
    body: ReviewEvent,
    background_tasks: BackgroundTasks,
    caller: dict = Depends(require_service),
    services: Services = Depends(get_services),
):
    counters = services.metrics.record_review(body.user_id, body.rating)
    background_tasks.add_task(services.standing.recompute, body.user_id)
    return {"accepted": True, "total_reviews": counters.total_reviews}


@events_router.post("/messages", status_code=202)
async def message_event(
    body: MessageEvent,
    background_tasks: BackgroundTasks,
    caller: dict = Depends(require_service),
    services: Services = Depends(get_services),
):
    services.metrics.record_message(body.user_id, body.responded, body.response_minutes)
    background_tasks.add_task(services.standing.recompute, body.user_id)
    return {"accepted": True}
