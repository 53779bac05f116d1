"""Recipient-facing routes: inline previews, landing pages, downloads."""
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, StreamingResponse

from dropzone.dependencies import ShareServices, get_services
from dropzone.errors import ExpiredError, NotFoundError
from dropzone.services.retrieval import FileStream, LandingView
from dropzone.templating import templates

router = APIRouter(tags=["share"])


def _content_disposition(kind: str, filename: str) -> str:
    # URL encode the filename to handle non-ASCII characters
    return f"{kind}; filename*=UTF-8''{quote(filename)}"


def _stream_response(stream: FileStream, kind: str) -> StreamingResponse:
    record = stream.record
    return StreamingResponse(
        stream.body,
        media_type=record.mime_type,
        headers={"Content-Disposition": _content_disposition(kind, record.original_name)},
    )


async def _form_fields(request: Request) -> dict[str, str]:
    if request.method != "POST":
        return {}
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


def _render(request: Request, view: LandingView) -> HTMLResponse:
    template = "password.html" if view.show_password_form else "landing.html"
    return templates.TemplateResponse(
        request, template, {"view": view}, status_code=view.status_code
    )


@router.get("/", response_class=HTMLResponse)
async def index(request: Request):
    """Upload page."""
    return templates.TemplateResponse(request, "index.html", {})


@router.get("/content/{share_id}")
async def preview_content(
    share_id: str,
    token: Optional[str] = Query(None),
    services: ShareServices = Depends(get_services),
):
    """Raw inline content for previews. Protected files need ``?token=``."""
    try:
        stream = await services.retrieval.open_preview(share_id, token)
    except ExpiredError:
        raise NotFoundError("Not Found")
    return _stream_response(stream, "inline")


@router.api_route("/download/batch/{batch_id}", methods=["GET", "POST"], response_class=HTMLResponse)
async def batch_landing_page(
    batch_id: str,
    request: Request,
    services: ShareServices = Depends(get_services),
):
    """Landing page listing every file of a batch."""
    fields = await _form_fields(request)
    view = await services.retrieval.batch_landing(batch_id, fields.get("password") or None)
    return _render(request, view)


@router.api_route("/download/{share_id}", methods=["GET", "POST"])
async def download_page(
    share_id: str,
    request: Request,
    services: ShareServices = Depends(get_services),
):
    """Landing page, password form, or (``action=download``) the attachment."""
    fields = await _form_fields(request)
    password = fields.get("password") or None

    view = await services.retrieval.landing(share_id, password)
    if view.show_password_form or fields.get("action") != "download":
        return _render(request, view)

    stream = await services.retrieval.download(share_id, password)
    return _stream_response(stream, "attachment")
