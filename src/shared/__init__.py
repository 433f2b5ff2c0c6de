"""Shared utilities and helpers."""
from shared.diagnostics import (
    log_cache_stats,
    log_catalog_summary,
    log_memory_usage,
)
from shared.logging_config import setup_logging

__all__ = [
    'log_cache_stats',
    'log_catalog_summary',
    'log_memory_usage',
    'setup_logging',
]
