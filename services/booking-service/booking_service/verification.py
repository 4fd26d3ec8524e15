import base64
import io
import uuid

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from .config import APP_BASE_URL
from .errors import QRCodeError


def issue_verification_token() -> str:
    return str(uuid.uuid4())


def build_verification_url(token: str, base_url: str = APP_BASE_URL) -> str:
    return f"{base_url.rstrip('/')}/verify?token={token}"


def render_qr_code(data: str) -> str:
    """
    Encode `data` into a PNG QR code and return it as a data URI.
    """
    try:
        qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, box_size=10, border=2)
        qr.add_data(data)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
    except Exception as e:
        raise QRCodeError(f"Failed to generate QR code: {e}") from e

    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("utf-8")


def issue_verification() -> tuple[str, str]:
    token = issue_verification_token()
    return token, render_qr_code(build_verification_url(token))
