"""Shared runtime for indexer apps: settings, logging, database and Redis access."""
