import base64
import io
from urllib.parse import quote

import qrcode

from qrguard.core.config import settings


def alert_url(vehicle_id: str) -> str:
    """Public URL printed on the vehicle sticker; opening it triggers the driver alert."""
    base = settings.public_base_url.rstrip("/")
    return f"{base}/api/initiate-call/{quote(vehicle_id, safe='')}"


def qr_png_base64(data: str, *, box_size: int = 8, border: int = 2) -> str:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("utf-8")
