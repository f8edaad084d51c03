from __future__ import annotations

from pydantic import BaseModel, Field


class AddTestsRequest(BaseModel):
    # Emptiness is checked by the registry so it surfaces as InvalidBatch.
    tests: list[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    ok: bool
    ts: float
    batches: int
    waiting: int
