"""Base schema classes with camelCase alias generation.

All API schemas inherit from these instead of BaseModel directly.
Backend Python code stays snake_case. API JSON output becomes camelCase.
"""
from datetime import datetime, timezone
from typing import Annotated

from pydantic import BaseModel, PlainSerializer
from pydantic.alias_generators import to_camel


def _utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# Timestamps go out as ISO-8601 UTC with a trailing Z, e.g. 2024-05-01T12:00:00.000Z
UtcDatetime = Annotated[datetime, PlainSerializer(_utc_iso, return_type=str)]


class CamelModel(BaseModel):
    """Request bodies and small responses. Accepts and outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class CamelORMModel(CamelModel):
    """Response schemas built from share records."""
    model_config = {
        **CamelModel.model_config,
        "from_attributes": True,
    }
