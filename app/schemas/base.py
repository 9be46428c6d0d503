"""
Base schema classes for the reconciliation API.

RULE: Response schemas that read from ORM rows inherit from
BaseResponseSchema; immutable values passed between services (actor,
product snapshot) inherit from BaseRecordSchema.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Response built from an ORM row.

    Usage:
        ReconciliationItemResponse.model_validate(item)
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseRecordSchema(BaseModel):
    """Frozen value object, validated once where it enters the service."""
    model_config = ConfigDict(
        frozen=True,
        from_attributes=True,
    )


class BaseCreateSchema(BaseModel):
    """Request body for creating; unknown fields are ignored."""
    model_config = ConfigDict(
        extra='ignore',
    )


class BaseUpdateSchema(BaseModel):
    """Request body for partial updates; every field is optional."""
    model_config = ConfigDict(
        extra='ignore',
    )
