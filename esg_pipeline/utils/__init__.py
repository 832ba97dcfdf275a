"""Shared utilities: logging, error classification, retry, worker pool, loaders."""
