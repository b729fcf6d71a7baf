"""
Ping endpoints: create, respond, and read back the ledger.
"""
from typing import Annotated, Union

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from pingchat.api.dependencies import get_services, parse_body
from pingchat.core.logging import get_logger
from pingchat.core.security import get_actor, get_validated_body
from pingchat.schemas.common import ErrorResponse, QueuedResponse
from pingchat.schemas.ping import (
    PingCreateRequest,
    PingExistsResponse,
    PingListResponse,
    PingResponse,
    PingStatsResponse,
    PingStatusUpdateRequest,
)
from pingchat.services.container import Services
from pingchat.services.rate_limiter import PING

logger = get_logger(__name__)

router = APIRouter(prefix="/pings", tags=["Pings"])


@router.post(
    "",
    response_model=PingResponse,
    status_code=201,
    responses={
        202: {"model": QueuedResponse, "description": "Store unreachable, ping queued for replay"},
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        404: {"model": ErrorResponse, "description": "Unknown listing"},
        409: {"model": ErrorResponse, "description": "A ping is already pending"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        429: {"model": ErrorResponse, "description": "Ping rate limit exceeded"},
    },
    summary="Ping a listing owner",
    description="Create a ping, or fold a follow-up into the conversation of an accepted one. Requires a valid HMAC-SHA256 signature."
)
async def create_ping(
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> Union[PingResponse, JSONResponse]:
    request = parse_body(validated_body, PingCreateRequest)
    outcome = await services.pipeline.send_ping(
        request.listing_id, actor, request.receiver, request.message
    )
    if outcome.queued:
        return JSONResponse(
            status_code=202,
            content=QueuedResponse(queued_item_id=outcome.queued_item_id).model_dump(),
        )
    return PingResponse.model_validate(outcome.ping)


@router.get(
    "/exists",
    response_model=PingExistsResponse,
    summary="Check for an open ping",
    description="True if the acting user has a pending or accepted ping on the listing/receiver pair."
)
async def ping_exists(
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
    listing_id: Annotated[str, Query(min_length=1)],
    receiver: Annotated[str, Query(min_length=1)],
) -> PingExistsResponse:
    exists = await services.ping_ledger.check_existing(listing_id, actor, receiver)
    return PingExistsResponse(exists=exists)


@router.get("/sent", response_model=PingListResponse, summary="Pings sent by the acting user")
async def list_sent(
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> PingListResponse:
    pings = await services.ping_ledger.list_sent(actor)
    return PingListResponse(data=[PingResponse.model_validate(p) for p in pings], total=len(pings))


@router.get("/received", response_model=PingListResponse, summary="Pings received by the acting user")
async def list_received(
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> PingListResponse:
    pings = await services.ping_ledger.list_received(actor)
    return PingListResponse(data=[PingResponse.model_validate(p) for p in pings], total=len(pings))


@router.get(
    "/stats",
    response_model=PingStatsResponse,
    summary="Ping statistics",
    description="Counts by role and status, the average response time as receiver, and the remaining ping budget."
)
async def ping_stats(
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> PingStatsResponse:
    stats = await services.ping_ledger.stats(actor)
    remaining = await services.rate_limiter.remaining(actor, PING)
    return PingStatsResponse(
        sent=stats.sent,
        received=stats.received,
        pending=stats.pending,
        accepted=stats.accepted,
        declined=stats.declined,
        average_response_minutes=stats.average_response_minutes,
        remaining_pings=remaining,
    )


@router.get(
    "/{ping_id}",
    response_model=PingResponse,
    responses={404: {"model": ErrorResponse, "description": "Ping not found"}},
    summary="Get a ping",
)
async def get_ping(
    ping_id: str,
    services: Annotated[Services, Depends(get_services)],
) -> PingResponse:
    return PingResponse.model_validate(await services.ping_ledger.get(ping_id))


@router.patch(
    "/{ping_id}",
    response_model=PingResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        403: {"model": ErrorResponse, "description": "Not the receiver of this ping"},
        404: {"model": ErrorResponse, "description": "Ping not found"},
        409: {"model": ErrorResponse, "description": "Ping already answered"},
        422: {"model": ErrorResponse, "description": "Validation error"},
    },
    summary="Accept or decline a ping",
    description="Accepting opens (or reuses) the conversation and may unlock the owner's phone."
)
async def update_ping_status(
    ping_id: str,
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> PingResponse:
    request = parse_body(validated_body, PingStatusUpdateRequest)
    ping = await services.ping_ledger.update_status(
        ping_id, request.status, request.response_message, actor=actor
    )
    return PingResponse.model_validate(ping)
