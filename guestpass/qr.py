"""QR code rendering for check-in payloads."""

from __future__ import annotations

from io import BytesIO

import qrcode


def render_qr_png(data: str, *, box_size: int = 8, border: int = 2) -> bytes:
    """Return ``data`` encoded as a PNG QR code."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#111827", back_color="white")

    buffered = BytesIO()
    img.save(buffered, "PNG")
    return buffered.getvalue()
