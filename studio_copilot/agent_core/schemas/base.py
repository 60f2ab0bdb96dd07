"""Pydantic base schema utilities for agent core models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base Pydantic model for all domain schemas.

    Configures common Pydantic behaviors:
    - ``populate_by_name=True``: Allow initialization by alias or field name.
    - ``extra="forbid"``: Prevent unknown fields from slipping into persisted records.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )


class LenientSchema(BaseModel):
    """
    Base model for payloads produced by an LLM.

    Model output routinely carries keys nobody asked for; they are dropped
    instead of failing validation. Field aliases are accepted, and a number
    given for a string field (e.g. a path like ``123``) is kept as text.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )
