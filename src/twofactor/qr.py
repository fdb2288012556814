"""QR rendering for provisioning URIs.

The engine itself only produces the otpauth:// text. A renderer turns it
into something a browser can display; nothing here talks to the network.
"""

from __future__ import annotations

import base64
import io
from typing import Protocol

import qrcode
import qrcode.constants


class QrRenderer(Protocol):
    def render(self, uri: str) -> str: ...


class PngDataUrlRenderer:
    """Render to a ``data:image/png;base64,...`` URL usable in an <img> tag."""

    def __init__(self, box_size: int = 10, border: int = 4) -> None:
        self.box_size = box_size
        self.border = border

    def render(self, uri: str) -> str:
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=self.box_size,
            border=self.border,
        )
        qr.add_data(uri)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")
