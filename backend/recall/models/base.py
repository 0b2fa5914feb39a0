"""
Pydantic bases for the scheduling API.

Inputs reject anything the core doesn't understand; outputs are built from
ORM rows and drop whatever columns the response doesn't expose.
"""

from pydantic import BaseModel, ConfigDict


class StrictRequest(BaseModel):
    """Input model: unknown fields are a validation error, strings are trimmed."""

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
        from_attributes=True,
    )


class StrictResponse(BaseModel):
    """
    Output model, usually filled with model_validate(orm_row).

    Example:
        >>> CardStateResponse.model_validate(state_row)
    """

    model_config = ConfigDict(
        extra="ignore",
        validate_default=True,
        from_attributes=True,
    )
