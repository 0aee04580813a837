"""Infrastructure: storage, embeddings, file watching, reconciliation."""
