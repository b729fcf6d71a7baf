"""
Shared FastAPI dependencies for the routers.
"""
import json
from typing import Type, TypeVar

from fastapi import HTTPException, Request
from pydantic import BaseModel, ValidationError as PydanticValidationError

from pingchat.core.logging import get_logger
from pingchat.services.container import Services

logger = get_logger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def get_services(request: Request) -> Services:
    """The service container built at startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="service not ready")
    return services


def parse_body(body: bytes, schema: Type[SchemaT]) -> SchemaT:
    """Parse a signed raw body into a request schema, 422 on failure."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        logger.warning(f"Invalid JSON in request: {e}")
        raise HTTPException(status_code=422, detail="Invalid JSON")

    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Validation error in request: {e}")
        raise HTTPException(status_code=422, detail=str(e))
