"""Render WhatsApp pairing payloads as scannable QR images."""

from __future__ import annotations

import base64
import io

import qrcode
from qrcode.constants import ERROR_CORRECT_M
from qrcode.exceptions import DataOverflowError
from qrcode.image.pure import PyPNGImage

from wabridge.types import WabridgeError

# 10px modules with a 2-module border land around 300px for pairing payloads
BOX_SIZE = 10
BORDER = 2


class QrRenderError(WabridgeError):
    """The pairing payload could not be encoded as a QR image."""


def _build(payload: str | bytes) -> qrcode.QRCode:
    if not payload:
        raise QrRenderError("empty pairing payload")
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_M,
        box_size=BOX_SIZE,
        border=BORDER,
    )
    try:
        qr.add_data(payload)
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as exc:
        raise QrRenderError(str(exc)) from exc
    return qr


def render_qr_data_uri(payload: str | bytes) -> str:
    """Return ``payload`` as a ``data:image/png;base64,...`` URI."""
    qr = _build(payload)
    buf = io.BytesIO()
    try:
        qr.make_image(image_factory=PyPNGImage).save(buf)
    except Exception as exc:
        raise QrRenderError(str(exc)) from exc
    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def render_qr_ascii(payload: str | bytes) -> str:
    """Terminal rendering for headless pairing."""
    qr = _build(payload)
    buf = io.StringIO()
    qr.print_ascii(out=buf, invert=True)
    return buf.getvalue()
