from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class CredentialsRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(..., min_length=6, max_length=72)

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        # bcrypt only takes 72 bytes, not characters
        if len(value.encode("utf-8")) > 72:
            raise ValueError("password must be at most 72 bytes")
        return value


class EmailRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")


class VerifyCodeRequest(EmailRequest):
    code: str = Field(..., pattern=r"^\d{6}$")


class CreateSessionRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)


class RenameSessionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)


class ChatTurnRequest(BaseModel):  # validates incoming chat turns
    model_config = ConfigDict(populate_by_name=True)

    session_id: int = Field(..., alias="sessionId")
    message: str = Field(..., min_length=1)


class SessionSummary(BaseModel):
    chat_id: int
    title: str
    created_at: datetime


class MessageOut(BaseModel):
    role: str
    content: str
