"""Order book indexer CLI."""
