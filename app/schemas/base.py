"""
Base Schema Classes for Pydantic Models

RULE: Schemas that read from ORM rows MUST inherit from BaseResponseSchema.
Entity snapshots handed to the allocation engine or the transfer state
machine inherit from SnapshotSchema so they cannot be mutated in place.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for all response schemas that read from ORM models.

    Usage:
        class LocationResponse(BaseResponseSchema):
            id: str
            name: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        # Allow population by field name or alias
        populate_by_name=True,
    )


class SnapshotSchema(BaseResponseSchema):
    """Immutable entity snapshot. Changes produce a new instance via model_copy."""
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        frozen=True,
    )


class BaseCreateSchema(BaseModel):
    """
    Base class for create/input schemas.

    No from_attributes needed since these don't read from ORM.
    """
    model_config = ConfigDict(
        # Allow extra fields to be ignored (forward compatibility)
        extra='ignore',
    )
