"""docweave: keep a Markdown document tree in sync with an embedding index."""

__version__ = "0.1.0"
