"""Pydantic schemas for the health check response."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Service status plus a cheap view of the dataset store."""

    status: Literal["ok", "degraded"] = Field(default="ok", description="Service status")
    environment: str = Field(description="Current app environment (dev or prod)")
    database: Literal["connected", "disconnected"] = Field(
        description="Whether the dataset store answered a trivial query",
    )
    dataset_count: int | None = Field(
        default=None,
        ge=0,
        description="Number of committed datasets; absent when the store is unreachable",
    )
