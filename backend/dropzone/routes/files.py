"""Files API routes: upload, metadata, QR codes and share emails."""
import logging

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from dropzone.dependencies import ShareServices, get_services
from dropzone.errors import PayloadTooLargeError, ShareError, ValidationError
from dropzone.schemas.file import (
    FileInfoResponse,
    QrResponse,
    SendEmailRequest,
    SendEmailResponse,
    SharedFile,
    UploadResponse,
)
from dropzone.services.notifier import ShareEmail
from dropzone.services.qr import qr_data_url_async
from dropzone.services.upload_pipeline import stage_uploads
from dropzone.services.urls import batch_url, share_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["files"])


@router.post("/upload", response_model=UploadResponse)
async def upload_files(
    request: Request,
    services: ShareServices = Depends(get_services),
):
    """Encrypt and share one or more files (multipart field ``files``)."""
    max_bytes = services.settings.MAX_UPLOAD_BYTES
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise PayloadTooLargeError()

    form = await request.form()
    try:
        uploads = [
            item for item in form.getlist("files")
            if isinstance(item, UploadFile) and item.filename
        ]
        if not uploads:
            raise ValidationError("No files uploaded")
        password = form.get("password")
        password = password if isinstance(password, str) and password else None

        staged = await stage_uploads(uploads, services.storage, max_bytes)
        result = await services.uploads.upload(
            staged, password=password, base_url=services.base_url(request)
        )
    finally:
        await form.close()

    return UploadResponse(
        files=[
            SharedFile(
                share_id=f.share_id,
                share_url=f.share_url,
                original_name=f.original_name,
                size=f.size,
                mime_type=f.mime_type,
                expires_at=f.expires_at,
            )
            for f in result.files
        ],
        batch_id=result.batch_id,
        batch_url=result.batch_url,
    )


@router.get("/file/{share_id}", response_model=FileInfoResponse)
async def get_file_info(
    share_id: str,
    services: ShareServices = Depends(get_services),
):
    """Get public file metadata by share ID."""
    record = await services.retrieval.file_info(share_id)
    return FileInfoResponse(
        original_name=record.original_name,
        size=record.size,
        mime_type=record.mime_type,
        uploaded_at=record.uploaded_at,
        expires_at=record.expires_at,
        download_count=record.download_count,
        batch_id=record.batch_id,
        is_protected=record.is_protected,
    )


@router.get("/qr/{share_id}", response_model=QrResponse)
async def share_qr_code(
    share_id: str,
    request: Request,
    services: ShareServices = Depends(get_services),
):
    """QR code (PNG data URL) for a file's share link."""
    await services.retrieval.resolve(share_id)
    url = share_url(services.base_url(request), share_id)
    return QrResponse(qr_code=await qr_data_url_async(url))


@router.get("/qr-batch/{batch_id}", response_model=QrResponse)
async def batch_qr_code(
    batch_id: str,
    request: Request,
    services: ShareServices = Depends(get_services),
):
    """QR code (PNG data URL) for a batch landing page."""
    await services.retrieval.resolve_batch(batch_id)
    url = batch_url(services.base_url(request), batch_id)
    return QrResponse(qr_code=await qr_data_url_async(url))


@router.post("/send-email", response_model=SendEmailResponse)
async def send_share_email(
    body: SendEmailRequest,
    services: ShareServices = Depends(get_services),
):
    """Email a share link to a recipient."""
    if not body.share_url or not body.recipient_email:
        raise ValidationError("Missing required fields")

    email = ShareEmail(
        share_url=body.share_url,
        recipient_email=body.recipient_email,
        sender_email=body.sender_email,
        file_name=body.file_name,
    )
    try:
        message_id = await services.notifier.send_share_email(email)
    except ShareError:
        raise
    except Exception as e:
        logger.error(f"Email error: {e}")
        raise ShareError("Failed to send email") from e

    logger.info(f"Email sent successfully. ID: {message_id}")
    return SendEmailResponse()
