"""Abstract base class for HTML-to-PDF converters.

Enables switching between PDF engines (local headless Chromium, remote
Gotenberg service) while keeping one failure contract: every engine-side
problem surfaces as a single ``RenderError`` and nothing is retried.
"""

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, Field

from invoicing.shared.config import Settings

PageFormat = Literal["A3", "A4", "A5", "Letter", "Legal"]

# Paper sizes in inches (width, height)
PAPER_SIZES: dict[str, tuple[float, float]] = {
    "A3": (11.7, 16.54),
    "A4": (8.27, 11.7),
    "A5": (5.83, 8.27),
    "Letter": (8.5, 11.0),
    "Legal": (8.5, 14.0),
}


class PdfOptions(BaseModel):
    """Page options for a conversion.

    Attributes:
        format: Paper format name
        scale: Rendering scale (Chromium accepts 0.1 to 2.0)
    """

    format: PageFormat = "A4"
    scale: float = Field(default=1.0, ge=0.1, le=2.0)


class PdfConverter(ABC):
    """Interface for HTML-to-PDF engines."""

    def __init__(self, settings: Settings) -> None:
        """Initialize converter with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    def default_options(self) -> PdfOptions:
        return PdfOptions(
            format=self.settings.pdf_default_format,
            scale=self.settings.pdf_default_scale,
        )

    @abstractmethod
    def convert(self, html: str, options: PdfOptions | None = None) -> bytes:
        """Rasterize an HTML document into PDF bytes.

        Args:
            html: Complete HTML document
            options: Page options (settings defaults if omitted)

        Returns:
            PDF document bytes

        Raises:
            RenderError: On any engine failure
        """
        pass

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Engine identifier for logging/metrics."""
        pass
