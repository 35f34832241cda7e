"""Local headless Chromium PDF engine using Playwright.

Launches a fresh browser per conversion, loads the HTML with ``set_content``
and prints it with ``page.pdf``. Requires the Chromium build to be installed
(``playwright install chromium``).

Based on Playwright Python documentation:
https://playwright.dev/python/docs/api/class-page#page-pdf
"""

import logging

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import sync_playwright

from invoicing.pdf.base import PdfConverter, PdfOptions
from invoicing.shared.errors import RenderError

logger = logging.getLogger(__name__)


class ChromiumPdfConverter(PdfConverter):
    """PDF converter backed by a local headless Chromium."""

    @property
    def engine_name(self) -> str:
        return "chromium"

    def convert(self, html: str, options: PdfOptions | None = None) -> bytes:
        """Render HTML to PDF in headless Chromium.

        Args:
            html: Complete HTML document
            options: Page options (settings defaults if omitted)

        Returns:
            PDF document bytes

        Raises:
            RenderError: If the browser fails to launch, load or print
        """
        options = options or self.default_options()
        timeout_ms = self.settings.pdf_timeout_seconds * 1000

        try:
            with sync_playwright() as playwright:
                browser = playwright.chromium.launch()
                try:
                    page = browser.new_page()
                    page.set_content(html, wait_until="load", timeout=timeout_ms)
                    pdf = page.pdf(
                        format=options.format,
                        scale=options.scale,
                        print_background=True,
                    )
                finally:
                    browser.close()
        except PlaywrightError as e:
            logger.error(f"Chromium PDF conversion failed: {e}")
            raise RenderError(f"PDF conversion failed: {e}") from e

        if not pdf:
            raise RenderError("PDF conversion produced no output")

        logger.info(f"Rendered PDF with chromium ({len(pdf)} bytes, {options.format})")
        return pdf
