"""Upload / share request and response schemas."""
from typing import Optional

from pydantic import Field

from dropzone.schemas.base import CamelModel, CamelORMModel, UtcDatetime


class SharedFile(CamelORMModel):
    share_id: str
    share_url: str
    original_name: str
    size: int
    mimetype: str = Field(validation_alias="mime_type")
    expires_at: UtcDatetime


class UploadResponse(CamelORMModel):
    success: bool = True
    files: list[SharedFile]
    batch_id: Optional[str] = None
    batch_url: Optional[str] = None


class FileInfoResponse(CamelORMModel):
    """Public metadata. Never includes password hash, iv or storage name."""
    original_name: str
    size: int
    mimetype: str = Field(validation_alias="mime_type")
    uploaded_at: UtcDatetime
    expires_at: UtcDatetime
    download_count: int
    batch_id: Optional[str] = None
    is_protected: bool


class QrResponse(CamelModel):
    success: bool = True
    qr_code: str


class SendEmailRequest(CamelModel):
    # Optional here so missing fields become a 400, not a schema 422
    share_url: Optional[str] = None
    recipient_email: Optional[str] = None
    sender_email: Optional[str] = None
    file_name: Optional[str] = None


class SendEmailResponse(CamelModel):
    success: bool = True
    message: str = "Email sent successfully"
