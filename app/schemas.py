"""
Pydantic request/response models.
"""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class CreateKeyRequest(BaseModel):
    agent_id: str

    @field_validator("agent_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("agent_id is required and must be a non-empty string")
        return value


class CreateKeyResponse(BaseModel):
    """Returned once; the raw key cannot be retrieved again."""
    api_key: str
    agent_id: str


class RateLimitStat(BaseModel):
    prefix: str
    used: int
    limit: int
    window_ms: int = Field(alias="windowMs")
    remaining: int
    resets_at: Optional[str] = Field(default=None, alias="resetsAt")


class RateLimitReport(BaseModel):
    ip_hash: str  # digits masked with "*", not a cryptographic hash
    limits: List[RateLimitStat]
    note: str
