"""QR-coded PDF badges for cleanroom baskets.

A badge carries the basket's ``BadgeData`` payload (with its integrity hash)
as a QR code. The QR image comes from an external HTTP service and is laid
out on a one-page PDF with ReportLab.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import quote

import requests
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .errors import ExternalServiceError
from .ports import FileStore, QRImageService, StoredFile
from .records import BadgeData

__all__ = [
    "DEFAULT_QR_SIZE",
    "BadgeLayout",
    "BASKET_BADGE_LAYOUT",
    "QRServerClient",
    "encode_payload",
    "badge_file_name",
    "render_badge_pdf",
    "generate_badge",
]

logger = logging.getLogger(__name__)

DEFAULT_QR_SIZE = 255

# Characters encodeURIComponent leaves unescaped besides alphanumerics
_URI_COMPONENT_SAFE = "-_.!~*'()"


def encode_payload(payload: str) -> str:
    return quote(payload, safe=_URI_COMPONENT_SAFE)


class QRServerClient:
    """Client for the ``api.qrserver.com`` QR rendering endpoint."""

    def __init__(
        self,
        base_url: str = "https://api.qrserver.com/v1/create-qr-code/",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_url(self, data: str, size: int) -> str:
        return f"{self.base_url}?size={size}x{size}&data={encode_payload(data)}"

    def fetch_qr_image(self, data: str, size: int = DEFAULT_QR_SIZE) -> bytes:
        """Fetch a PNG QR code encoding ``data``.

        Args:
            data: Text to encode, percent-encoded into the query string.
            size: Square image dimension in pixels.

        Returns:
            The PNG bytes.

        Raises:
            ExternalServiceError: On network errors, HTTP errors, or a
                response that is not an image.
        """
        url = self.build_url(data, size)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error(f"QR service request failed: {exc}")
            raise ExternalServiceError("qr", f"QR image request failed: {exc}") from exc

        content_type = response.headers.get("Content-Type", "")
        if not content_type.startswith("image/png"):
            raise ExternalServiceError("qr", f"Expected image/png, got '{content_type or 'unknown'}'")
        return response.content


# ---------------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BadgeLayout:
    """Named page layout for a printed badge."""

    name: str
    page_size: Tuple[float, float] = letter
    margin: float = 25 * mm
    qr_width: float = 90 * mm
    font: str = "Times-Roman"
    bold_font: str = "Times-Bold"
    heading_size: int = 28
    body_size: int = 12


BASKET_BADGE_LAYOUT = BadgeLayout(name="basket qr code")


def badge_file_name(badge: BadgeData) -> str:
    """Return ``{basket:<5}{assigned:<12}{name}.pdf``."""
    return f"{badge.basket:<5}{badge.assigned:<12}{badge.name}.pdf"


def render_badge_pdf(
    badge: BadgeData, qr_png: bytes, layout: BadgeLayout = BASKET_BADGE_LAYOUT
) -> bytes:
    """Draw the badge page and return the PDF bytes.

    The PDF subject holds the badge payload JSON.
    """
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=layout.page_size)
    pdf.setTitle(f"Cleanroom Basket {badge.basket}")
    pdf.setSubject(badge.to_json())

    width, height = layout.page_size
    y = height - layout.margin

    pdf.setFont(layout.bold_font, layout.heading_size)
    pdf.drawCentredString(width / 2, y, f"Basket {badge.basket}")
    y -= 10 * mm + layout.qr_width

    pdf.drawImage(
        ImageReader(io.BytesIO(qr_png)),
        (width - layout.qr_width) / 2,
        y,
        width=layout.qr_width,
        height=layout.qr_width,
    )

    pdf.setFont(layout.font, layout.body_size)
    for line in (badge.name, badge.eid, f"Assigned {badge.assigned}"):
        y -= 8 * mm
        pdf.drawCentredString(width / 2, y, line)

    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def generate_badge(
    badge: BadgeData,
    qr_service: QRImageService,
    file_store: FileStore,
    size: int = DEFAULT_QR_SIZE,
    layout: BadgeLayout = BASKET_BADGE_LAYOUT,
) -> StoredFile:
    """Render and store the PDF badge for a basket assignment.

    Args:
        badge: Badge fields for the assignment.
        qr_service: Service that renders the QR image.
        file_store: Destination for the PDF.
        size: QR image size in pixels.
        layout: Page layout.

    Returns:
        The stored PDF, usable as a mail attachment.
    """
    payload = badge.to_json()
    qr_png = qr_service.fetch_qr_image(payload, size)
    pdf_bytes = render_badge_pdf(badge, qr_png, layout)
    stored = file_store.create_file(
        badge_file_name(badge), pdf_bytes, "application/pdf", description=payload
    )
    logger.info(f"[OK] Generated badge for basket {badge.basket} ({badge.hash[:12]}...)")
    return stored
