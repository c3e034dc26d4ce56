"""Patent Retriever primary package."""

from . import (
    assembler,
    config,
    errors,
    fetcher,
    identifiers,
    log_utils,
    models,
    progress,
    providers,
    scheduler,
)

__all__ = [
    "assembler",
    "config",
    "errors",
    "fetcher",
    "identifiers",
    "log_utils",
    "models",
    "progress",
    "providers",
    "scheduler",
]
