"""Doc-type registry and frontmatter validation."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from docweave.doc_sync.parser import ParsedDocument

logger = logging.getLogger(__name__)

# Frontmatter keys accepted on every document regardless of type.
STANDARD_FIELDS = frozenset(
    {
        "title",
        "doc_type",
        "doctype",
        "promotion_level",
        "promotionlevel",
        "tags",
        "created",
        "updated",
        "supersedes",
        "links",
        "date",
    }
)


@dataclass(frozen=True)
class DocTypeDefinition:
    """Schema of one document type."""

    id: str
    name: str
    description: str = ""
    required_fields: tuple[str, ...] = ()
    optional_fields: tuple[str, ...] = ()
    is_built_in: bool = False

    @property
    def known_fields(self) -> frozenset[str]:
        return frozenset(f.lower() for f in (*self.required_fields, *self.optional_fields))


_BUILT_INS: tuple[DocTypeDefinition, ...] = (
    DocTypeDefinition(
        id="problem",
        name="Problem Statement",
        description="Problem statements and issue descriptions.",
        required_fields=("doc_type", "title", "tags"),
        optional_fields=("root_cause", "solution_status", "severity", "promotion_level", "links", "date"),
        is_built_in=True,
    ),
    DocTypeDefinition(
        id="insight",
        name="Insight",
        description="Lessons learned from project experience.",
        required_fields=("doc_type", "title", "tags"),
        optional_fields=("discovery_context", "applications", "promotion_level", "links", "date", "category"),
        is_built_in=True,
    ),
    DocTypeDefinition(
        id="codebase",
        name="Codebase Documentation",
        description="Documentation of code structure and implementation.",
        required_fields=("doc_type", "title", "component"),
        optional_fields=("dependencies", "patterns", "promotion_level", "links", "tags", "module"),
        is_built_in=True,
    ),
    DocTypeDefinition(
        id="tool",
        name="Tool Documentation",
        description="Tools, utilities and scripts used in the project.",
        required_fields=("doc_type", "title", "tool_name"),
        optional_fields=("version", "setup_requirements", "promotion_level", "links", "tags", "usage"),
        is_built_in=True,
    ),
    DocTypeDefinition(
        id="style",
        name="Style Guide",
        description="Style guides and coding standards.",
        required_fields=("doc_type", "title", "category"),
        optional_fields=("exceptions", "applies_to", "promotion_level", "links", "tags", "language"),
        is_built_in=True,
    ),
)


class DocTypeRegistry:
    """Thread-safe registry of document types, seeded with the built-ins."""

    def __init__(self, *, include_built_ins: bool = True) -> None:
        self._lock = threading.Lock()
        self._types: dict[str, DocTypeDefinition] = {}
        if include_built_ins:
            for definition in _BUILT_INS:
                self.register(definition)

    def register(self, definition: DocTypeDefinition) -> None:
        """Add *definition*. Raises ``ValueError`` if its id is taken."""
        if not definition.id or not definition.id.strip():
            msg = "Doc type id must be a non-empty string"
            raise ValueError(msg)
        key = definition.id.lower()
        with self._lock:
            if key in self._types:
                msg = f"Document type '{definition.id}' is already registered."
                raise ValueError(msg)
            self._types[key] = definition
        logger.debug("Registered doc type '%s' (built-in: %s)", definition.id, definition.is_built_in)

    def get(self, doc_type: str) -> DocTypeDefinition | None:
        if not doc_type:
            return None
        with self._lock:
            return self._types.get(doc_type.lower())

    def is_registered(self, doc_type: str) -> bool:
        return self.get(doc_type) is not None

    def all(self) -> list[DocTypeDefinition]:
        with self._lock:
            return sorted(self._types.values(), key=lambda d: d.id)


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


@dataclass
class ValidationResult:
    is_valid: bool
    doc_type: str = ""
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def read_doc_type(frontmatter: dict[str, Any] | None) -> str:
    """Return the ``doc_type`` / ``docType`` value (case-insensitive key), or ""."""
    if not frontmatter:
        return ""
    for key, value in frontmatter.items():
        if key.lower() in ("doc_type", "doctype") and isinstance(value, str):
            return value.strip()
    return ""


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


class DocumentValidator:
    """Validate parsed documents against the doc-type registry."""

    def __init__(self, registry: DocTypeRegistry | None = None) -> None:
        self._registry = registry

    def validate(self, parsed: ParsedDocument) -> ValidationResult:
        warnings: list[str] = []
        doc_type = read_doc_type(parsed.frontmatter)

        if not parsed.title:
            warnings.append("Document has no title (neither in frontmatter nor as H1 header).")

        if not doc_type:
            warnings.append(
                "No doc_type specified in frontmatter. "
                "Document will be processed without type validation."
            )
            return ValidationResult(is_valid=True, doc_type="", warnings=warnings)

        if self._registry is None:
            return ValidationResult(is_valid=True, doc_type=doc_type, warnings=warnings)

        definition = self._registry.get(doc_type)
        if definition is None:
            warnings.append(
                f"Unknown doc_type '{doc_type}'. Document will be processed without schema validation."
            )
            return ValidationResult(is_valid=True, doc_type=doc_type, warnings=warnings)

        fm = {k.lower(): v for k, v in (parsed.frontmatter or {}).items()}
        fm.setdefault("doc_type", doc_type)
        errors = [
            ValidationError(name, f"Required field '{name}' is missing or empty")
            for name in definition.required_fields
            if _is_blank(fm.get(name.lower()))
        ]

        known = definition.known_fields | STANDARD_FIELDS
        for key in parsed.frontmatter or {}:
            if key.lower() not in known:
                warnings.append(f"Unknown field '{key}' in frontmatter (may be ignored by processing).")

        return ValidationResult(
            is_valid=not errors,
            doc_type=definition.id,
            errors=errors,
            warnings=warnings,
        )
