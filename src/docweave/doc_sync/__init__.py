"""Doc sync domain: parsing, validation, chunking, hooks, events, indexing."""

from docweave.doc_sync.chunker import ChunkingOptions, ContentChunk, chunk_text
from docweave.doc_sync.events import (
    DocumentEventPublisher,
    DocumentPromotedEvent,
    DocumentSupersededEvent,
)
from docweave.doc_sync.hooks import DocumentHook, HookContext, HookExecutor, HookResult
from docweave.doc_sync.parser import ParsedDocument, parse_document, parse_frontmatter
from docweave.doc_sync.validator import (
    DocTypeDefinition,
    DocTypeRegistry,
    DocumentValidator,
    ValidationResult,
)

__all__ = [
    "ChunkingOptions",
    "ContentChunk",
    "DocTypeDefinition",
    "DocTypeRegistry",
    "DocumentEventPublisher",
    "DocumentHook",
    "DocumentPromotedEvent",
    "DocumentSupersededEvent",
    "DocumentValidator",
    "HookContext",
    "HookExecutor",
    "HookResult",
    "ParsedDocument",
    "ValidationResult",
    "chunk_text",
    "parse_document",
    "parse_frontmatter",
]
