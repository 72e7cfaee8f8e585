# core/models.py
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Any
import datetime

# --- Core Data Models ---

class FileDocument(BaseModel):
    """Metadata record for one user's copy of an uploaded file."""
    id: str = Field(..., description="Document ID in the files table")
    name: str
    url: str = Field(..., description="Public view URL of the stored object")
    type: str = Field(..., description="Category: image, document, spreadsheet, presentation, video, audio, archive, code, other")
    extension: str = ""
    size: int = Field(0, ge=0, description="Size in bytes")
    bucket_file_id: str = Field(..., description="Object ID inside the storage bucket")
    owner: str = Field(..., description="ID of the owning user document")
    account_id: Optional[str] = None
    users: List[str] = Field(default_factory=list, description="Emails the file is shared with")
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None

    class Config:
        from_attributes = True

    @field_validator('users', mode='before')
    @classmethod
    def none_users_to_list(cls, value):
        return value or []

class UserDocument(BaseModel):
    """Profile record holding identity fields and owned file references."""
    id: str
    email: str
    full_name: str
    avatar: Optional[str] = None
    account_id: str
    files: List[str] = Field(default_factory=list, description="IDs of owned file documents")

    class Config:
        from_attributes = True

    @field_validator('files', mode='before')
    @classmethod
    def none_files_to_list(cls, value):
        return value or []


class ActionResult(BaseModel):
    """Envelope returned by server-side actions instead of raising for expected failures."""
    success: bool
    data: Any | None = None
    error: Optional[str] = None
    message: Optional[str] = None


# --- Auth Service Request/Response Models ---

class SendOtpRequest(BaseModel):
    email: str

    @field_validator('email')
    @classmethod
    def normalise_email(cls, value: str) -> str:
        value = value.strip().lower()
        if "@" not in value:
            raise ValueError("A valid email address is required.")
        return value

class CreateAccountRequest(SendOtpRequest):
    full_name: str = Field(..., min_length=2, max_length=50)

class VerifyOtpRequest(SendOtpRequest):
    otp: str = Field(..., min_length=6, max_length=6)

class SessionInfo(BaseModel):
    """Session returned by a successful OTP verification."""
    user_id: str
    access_token: str
    expires_at: Optional[datetime.datetime] = None


# --- File Service Request/Response Models ---

class RenameRequest(BaseModel):
    name: str

class ShareRequest(BaseModel):
    emails: List[str] = Field(default_factory=list)

class TypeUsage(BaseModel):
    """Aggregate size and most recent activity for one dashboard category."""
    title: str
    size: int = 0
    latest_date: Optional[datetime.datetime] = None
    url: str

class UsageSummary(BaseModel):
    used: int = 0
    all: int
    percentage: float = 0.0
    categories: List[TypeUsage] = Field(default_factory=list)


# --- API Gateway Response Model ---

class GatewayResponse(BaseModel):
    """Standard response wrapper for the API Gateway."""
    status: str = Field(description="'success' or 'error'")
    data: Any | None = Field(default=None, description="The primary data payload (depends on the endpoint)")
    message: Optional[str] = Field(default=None, description="Optional status message or error details")
