"""QR codes for share links, as PNG data URLs."""
import asyncio
import base64
from io import BytesIO

import qrcode


def qr_png(url: str) -> bytes:
    qr = qrcode.make(url)
    buf = BytesIO()
    qr.save(buf, format="PNG")
    return buf.getvalue()


def qr_data_url(url: str) -> str:
    return "data:image/png;base64," + base64.b64encode(qr_png(url)).decode()


async def qr_data_url_async(url: str) -> str:
    """Render off the event loop; PNG encoding is CPU bound."""
    return await asyncio.to_thread(qr_data_url, url)
