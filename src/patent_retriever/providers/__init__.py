"""Repository adapters for Patent Retriever."""

from typing import TYPE_CHECKING, Any

from .base import DocumentRepository, RetrievalPlan
from .registry import (
    ProviderCapabilities,
    ProviderInfo,
    ProviderRegistry,
    register_default_providers,
    registry,
)

if TYPE_CHECKING:
    from .ops.provider import OpsProvider
    from .uspto.provider import UsptoProvider


def __getattr__(name: str) -> Any:
    if name == "OpsProvider":
        from .ops.provider import OpsProvider

        return OpsProvider
    if name == "UsptoProvider":
        from .uspto.provider import UsptoProvider

        return UsptoProvider
    raise AttributeError(name)


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + ["OpsProvider", "UsptoProvider"])


__all__ = [
    "DocumentRepository",
    "OpsProvider",
    "ProviderCapabilities",
    "ProviderInfo",
    "ProviderRegistry",
    "RetrievalPlan",
    "UsptoProvider",
    "register_default_providers",
    "registry",
]
