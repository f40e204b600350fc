"""QR challenge rendering."""

import base64
import io

import qrcode


def qr_data_url(challenge: str) -> str:
    """Render a QR challenge string as a ``data:image/png;base64,...`` URL."""
    image = qrcode.make(challenge)
    buffer = io.BytesIO()
    image.save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
