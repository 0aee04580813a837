"""Graph domain: link graph, cross references, supersession."""

from docweave.graph.cross_refs import (
    CrossReferenceResolver,
    DocumentReference,
    LinkResolutionSettings,
    ReferenceKind,
    ResolvedReference,
)
from docweave.graph.link_graph import LinkGraph, RelationshipType
from docweave.graph.supersession import (
    ScoredDocument,
    SupersessionChain,
    SupersessionResult,
    SupersessionTracker,
)

__all__ = [
    "CrossReferenceResolver",
    "DocumentReference",
    "LinkGraph",
    "LinkResolutionSettings",
    "ReferenceKind",
    "RelationshipType",
    "ResolvedReference",
    "ScoredDocument",
    "SupersessionChain",
    "SupersessionResult",
    "SupersessionTracker",
]
