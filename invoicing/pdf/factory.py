"""Factory for creating PDF converters based on configuration.

Implements Factory Pattern for engine selection with a registry for
extensibility, so new engines can be added without touching callers.
"""

import logging

from invoicing.pdf.base import PdfConverter
from invoicing.pdf.chromium_converter import ChromiumPdfConverter
from invoicing.pdf.gotenberg_converter import GotenbergPdfConverter
from invoicing.shared.config import Settings

logger = logging.getLogger(__name__)


class ConverterRegistry:
    """Registry of available PDF engines."""

    _converters: dict[str, type[PdfConverter]] = {
        "chromium": ChromiumPdfConverter,
        "gotenberg": GotenbergPdfConverter,
    }

    @classmethod
    def register(cls, name: str, converter_class: type[PdfConverter]) -> None:
        """Register a new engine.

        Args:
            name: Engine identifier (must match Settings.pdf_engine)
            converter_class: Class implementing PdfConverter
        """
        cls._converters[name] = converter_class
        logger.info(f"Registered PDF engine: {name}")

    @classmethod
    def get_converter_class(cls, name: str) -> type[PdfConverter]:
        """Get converter class by name.

        Raises:
            ValueError: If engine not found in registry
        """
        if name not in cls._converters:
            available = ", ".join(cls._converters.keys())
            raise ValueError(f"Unknown PDF engine: '{name}'. Available engines: {available}")
        return cls._converters[name]

    @classmethod
    def list_engines(cls) -> list[str]:
        return list(cls._converters.keys())


def create_pdf_converter(settings: Settings) -> PdfConverter:
    """Create the PDF converter named by ``settings.pdf_engine``.

    Args:
        settings: Application settings

    Returns:
        Configured converter instance

    Raises:
        ValueError: If configured engine is unknown
    """
    converter_class = ConverterRegistry.get_converter_class(settings.pdf_engine)
    converter = converter_class(settings)
    logger.info(f"Created PDF converter: {settings.pdf_engine}")
    return converter
