"""
Phone visibility, sharing preference and unlock grant endpoints.
"""
from typing import Annotated

from fastapi import APIRouter, Depends

from pingchat.api.dependencies import get_services, parse_body
from pingchat.core.errors import NotFoundError
from pingchat.core.logging import get_logger
from pingchat.core.security import get_actor, get_validated_body
from pingchat.schemas.common import ErrorResponse
from pingchat.schemas.phone import (
    PhoneGrantListResponse,
    PhoneGrantResponse,
    PhonePreferenceRequest,
    PhonePreferenceResponse,
    PhoneVisibilityResponse,
    RevokeResponse,
)
from pingchat.services.container import Services

logger = get_logger(__name__)

router = APIRouter(prefix="/users", tags=["Phone"])


async def current_user_id(
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> str:
    """Resolve the acting username to its user id."""
    user = await services.directory.get_user_by_username(actor)
    if user is None:
        raise NotFoundError(f"User {actor} not found")
    return user.id


@router.get(
    "/{owner_id}/phone",
    response_model=PhoneVisibilityResponse,
    summary="Phone number visibility",
    description="The owner's phone if the acting user may see it, otherwise `{phone: null, can_share: false}`."
)
async def get_phone(
    owner_id: str,
    actor: Annotated[str, Depends(get_actor)],
    services: Annotated[Services, Depends(get_services)],
) -> PhoneVisibilityResponse:
    viewer = await services.directory.get_user_by_username(actor)
    viewer_id = viewer.id if viewer is not None else None
    visibility = await services.phone_gate.get_visibility(owner_id, viewer_id)
    return PhoneVisibilityResponse(phone=visibility.phone, can_share=visibility.can_share)


@router.get(
    "/me/phone-preference",
    response_model=PhonePreferenceResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown user"}},
    summary="Current phone sharing preference",
)
async def get_phone_preference(
    user_id: Annotated[str, Depends(current_user_id)],
    services: Annotated[Services, Depends(get_services)],
) -> PhonePreferenceResponse:
    preference = await services.phone_gate.get_preference(user_id)
    return PhonePreferenceResponse(user_id=user_id, preference=preference.value)


@router.put(
    "/me/phone-preference",
    response_model=PhonePreferenceResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid signature"},
        404: {"model": ErrorResponse, "description": "Unknown user"},
        422: {"model": ErrorResponse, "description": "Validation error"},
    },
    summary="Change phone sharing preference",
    description="Existing unlock grants are kept when switching between policies."
)
async def set_phone_preference(
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    user_id: Annotated[str, Depends(current_user_id)],
    services: Annotated[Services, Depends(get_services)],
) -> PhonePreferenceResponse:
    request = parse_body(validated_body, PhonePreferenceRequest)
    preference = await services.phone_gate.set_preference(user_id, request.preference)
    return PhonePreferenceResponse(user_id=user_id, preference=preference.value)


@router.get(
    "/me/phone-grants",
    response_model=PhoneGrantListResponse,
    summary="Users who unlocked my phone",
)
async def list_phone_grants(
    user_id: Annotated[str, Depends(current_user_id)],
    services: Annotated[Services, Depends(get_services)],
) -> PhoneGrantListResponse:
    grants = await services.phone_gate.list_grants(user_id)
    return PhoneGrantListResponse(
        data=[PhoneGrantResponse.model_validate(g) for g in grants],
        total=len(grants),
    )


@router.delete(
    "/me/phone-grants/{viewer_id}",
    response_model=RevokeResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid signature"}},
    summary="Revoke one user's phone access",
)
async def revoke_phone_grant(
    viewer_id: str,
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    user_id: Annotated[str, Depends(current_user_id)],
    services: Annotated[Services, Depends(get_services)],
) -> RevokeResponse:
    removed = await services.phone_gate.revoke(user_id, viewer_id)
    return RevokeResponse(removed=1 if removed else 0)


@router.delete(
    "/me/phone-grants",
    response_model=RevokeResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid signature"}},
    summary="Revoke all phone access",
)
async def revoke_all_phone_grants(
    validated_body: Annotated[bytes, Depends(get_validated_body)],
    user_id: Annotated[str, Depends(current_user_id)],
    services: Annotated[Services, Depends(get_services)],
) -> RevokeResponse:
    removed = await services.phone_gate.revoke_all(user_id)
    return RevokeResponse(removed=removed)
