from datetime import datetime
from pydantic import BaseModel, Field


class UserResponse(BaseModel):
    id: str
    email: str
    full_name: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TokenPayload(BaseModel):
    sub: str  # user id
    email: str
    exp: int
    type: str = "access"


class SignupRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str
    full_name: str = Field("", max_length=100)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
