"""Tool embedding index: storage, near-duplicate pruning and indexing."""
