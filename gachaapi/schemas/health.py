"""Pydantic models for health endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class HealthCheckResponse(BaseModel):
    """Response model for service health checks."""

    status: str = "healthy"
    database: bool = True
    cache: bool = False
    unresolved_errors: Optional[int] = None
    last_error_logged: Optional[datetime] = None
    error: Optional[str] = None
