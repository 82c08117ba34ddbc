"""Admin session schemas."""

from pydantic import BaseModel, Field


class AdminLogin(BaseModel):
    pin: str = Field(min_length=1, max_length=72)


class AdminSession(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
