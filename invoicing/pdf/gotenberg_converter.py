"""Remote PDF engine using a Gotenberg Chromium service.

Posts the HTML as ``index.html`` to Gotenberg's Chromium HTML route and
returns the response body. Useful where installing a browser next to the API
is not an option.

See: https://gotenberg.dev/docs/routes#html-file-into-pdf-route
"""

import logging

import httpx

from invoicing.pdf.base import PAPER_SIZES, PdfConverter, PdfOptions
from invoicing.shared.config import Settings
from invoicing.shared.errors import RenderError

logger = logging.getLogger(__name__)

CONVERT_HTML_ROUTE = "/forms/chromium/convert/html"


class GotenbergPdfConverter(PdfConverter):
    """PDF converter backed by a Gotenberg server."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        """Initialize Gotenberg converter.

        Args:
            settings: Application settings
            client: HTTP client to use (a new one is created if omitted)
        """
        super().__init__(settings)
        self._base_url = settings.gotenberg_url.rstrip("/")
        self._client = client or httpx.Client(timeout=settings.pdf_timeout_seconds)

    @property
    def engine_name(self) -> str:
        return "gotenberg"

    def convert(self, html: str, options: PdfOptions | None = None) -> bytes:
        """Render HTML to PDF through Gotenberg.

        Args:
            html: Complete HTML document
            options: Page options (settings defaults if omitted)

        Returns:
            PDF document bytes

        Raises:
            RenderError: On transport errors, non-200 responses or an empty body
        """
        options = options or self.default_options()
        width, height = PAPER_SIZES[options.format]
        form = {
            "paperWidth": str(width),
            "paperHeight": str(height),
            "scale": str(options.scale),
            "printBackground": "true",
        }
        files = {"files": ("index.html", html.encode("utf-8"), "text/html")}

        try:
            response = self._client.post(
                f"{self._base_url}{CONVERT_HTML_ROUTE}", data=form, files=files
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Gotenberg returned {e.response.status_code}: {e.response.text[:200]}")
            raise RenderError(f"PDF conversion failed: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Gotenberg request failed: {e}")
            raise RenderError(f"PDF conversion failed: {e}") from e

        pdf = response.content
        if not pdf:
            raise RenderError("PDF conversion produced no output")

        logger.info(f"Rendered PDF with gotenberg ({len(pdf)} bytes, {options.format})")
        return pdf
