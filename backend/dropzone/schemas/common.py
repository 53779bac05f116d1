"""Shared Pydantic schemas."""
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body of every failed /api/* response."""
    success: bool = False
    error: str
