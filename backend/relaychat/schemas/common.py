"""Common schemas and utilities."""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class ListResponse(BaseModel, Generic[T]):
    """List wrapper used by collection endpoints."""

    data: list[T]


class ErrorResponse(BaseModel):
    """Error body; always the generic message for core failures."""

    error: str


class StatusResponse(BaseModel):
    status: str
