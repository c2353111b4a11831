"""Pydantic bases for the Scorebook wire format (camelCase JSON)."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire.

    FastAPI serializes response models by alias, so clients see ``imageUrl``
    while services build ``image_url``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class OpenCamelModel(CamelModel):
    """CamelModel that keeps unknown keys.

    Used where clients attach their own metadata (page rotation, crop boxes)
    that the server stores and hands back untouched.
    """

    model_config = ConfigDict(extra="allow")
