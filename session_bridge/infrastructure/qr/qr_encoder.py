"""
QR encoding for the pairing payload emitted by the transport.
"""

import base64
from io import BytesIO

import qrcode


def encode_qr_data_url(payload: str) -> str:
    """
    Render a pairing payload as a PNG `data:` URL.

    Raises:
        ValueError: empty payload
    """
    if not payload:
        raise ValueError("Empty QR payload")

    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = BytesIO()
    img.save(buffer, format='PNG')
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
