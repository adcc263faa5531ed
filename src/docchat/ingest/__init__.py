"""Document ingestion: extraction, normalisation, chunking and indexing."""

from .chunking import TextChunker, estimate_page, split_text
from .extractors import DocumentExtractor, DocxExtractor, PDFExtractor, TextExtractor
from .format_detection import DocumentFormat, DocumentFormatDetector
from .models import (
    ChunkMetadata,
    DocumentChunk,
    DocumentInfo,
    DocumentRecord,
    ExtractedDocument,
    PageContent,
    TextSpan,
)
from .pipeline import IngestPipeline, IngestPipelineConfig, make_namespace_id

__all__ = [
    "ChunkMetadata",
    "DocumentChunk",
    "DocumentExtractor",
    "DocumentFormat",
    "DocumentFormatDetector",
    "DocumentInfo",
    "DocumentRecord",
    "DocxExtractor",
    "ExtractedDocument",
    "IngestPipeline",
    "IngestPipelineConfig",
    "PDFExtractor",
    "PageContent",
    "TextChunker",
    "TextExtractor",
    "TextSpan",
    "estimate_page",
    "make_namespace_id",
    "split_text",
]
