"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data
- Response models for API responses (success and error envelopes)
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Pydantic Request Models
# =============================================================================

class MessageCreate(BaseModel):
    """
    Body of POST /api/messages.

    Fields are optional here: presence, blankness and length are
    checked by the storage layer, which answers every field problem with
    the same 400 response.
    """
    name: Optional[str] = Field(None, description="Author name (max 255 characters)")
    email: Optional[str] = Field(None, description="Author email (max 255 characters)")
    message: Optional[str] = Field(None, description="Message body")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Ada",
                    "email": "ada@example.com",
                    "message": "hello",
                }
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class MessageResponse(BaseModel):
    """A single stored message."""
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="Server-assigned message id")
    name: str
    email: str
    message: str
    created_at: datetime = Field(..., description="Insertion time (UTC)")
    updated_at: datetime = Field(..., description="Last modification time (UTC)")

    @field_validator("created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """SQLite hands back naive datetimes; everything is stored as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class MessagesListResponse(BaseModel):
    """Response model for GET /api/messages."""
    success: bool = True
    count: int = Field(..., ge=0, description="Number of messages in data")
    data: list[MessageResponse] = Field(default_factory=list)


class MessageDetailResponse(BaseModel):
    """Response model for GET /api/messages/{id}."""
    success: bool = True
    data: MessageResponse


class MessageCreatedResponse(BaseModel):
    """Response model for POST /api/messages."""
    success: bool = True
    message: str = "Message created successfully"
    data: MessageResponse


class MessageDeletedResponse(BaseModel):
    """Response model for DELETE /api/messages/{id}."""
    success: bool = True
    message: str = "Message deleted successfully"


class ErrorResponse(BaseModel):
    """Response model for every error response."""
    success: bool = False
    error: str = Field(..., description="Error category")
    message: str = Field(..., description="Human readable description")
    details: Optional[str] = Field(None, description="Internal error text (development only)")


class HealthResponse(BaseModel):
    """Response model for GET /api/health."""
    status: str = "OK"
    message: str = "Server is running smoothly"
    timestamp: datetime
    uptime: float = Field(..., ge=0, description="Seconds since the application started")


class ReadinessResponse(BaseModel):
    """Response model for the readiness probe."""
    status: str = Field(..., description="Readiness status")
    reason: Optional[str] = Field(None, description="Reason if not ready")


class DatabaseInfo(BaseModel):
    connected: bool = True
    time: Optional[datetime] = None
    version: str


class MessageCount(BaseModel):
    count: int = Field(..., ge=0)


class DatabaseStatusResponse(BaseModel):
    """Response model for GET /api/test-db."""
    success: bool = True
    database: DatabaseInfo
    messages: MessageCount


class ColumnInfo(BaseModel):
    column_name: str
    data_type: str
    is_nullable: str


class SchemaResponse(BaseModel):
    """Response model for GET /api/check-tables."""
    success: bool = True
    tables: list[dict[str, Any]]
    messages_columns: list[ColumnInfo]
