"""Per-class content extraction for Are.na blocks."""

from app.services.extraction.cleaning import clean_content, title_from_url
from app.services.extraction.document import DocumentExtractor
from app.services.extraction.image import ImageAnalysis, ImageExtractor, VisionClient
from app.services.extraction.results import ChainOutcome, Err, Ok, run_chain
from app.services.extraction.router import (
    ContentExtractor,
    ExtractionError,
    ExtractionOutcome,
    ProcessedBlock,
    select_thumbnail,
)
from app.services.extraction.video import VideoExtractor

__all__ = [
    "ContentExtractor",
    "ExtractionError",
    "ExtractionOutcome",
    "ProcessedBlock",
    "select_thumbnail",
    "DocumentExtractor",
    "VideoExtractor",
    "ImageExtractor",
    "ImageAnalysis",
    "VisionClient",
    "Ok",
    "Err",
    "ChainOutcome",
    "run_chain",
    "clean_content",
    "title_from_url",
]
