from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class ProviderCapabilities:
    supports_merge: bool = False
    supports_archive: bool = False
    supports_listing: bool = False
    requires_token: bool = False


@dataclass(frozen=True)
class ProviderInfo:
    name: str
    title: str
    description: str
    capabilities: ProviderCapabilities = field(default_factory=ProviderCapabilities)
    credentials: list[str] = field(default_factory=list)
    homepage: str | None = None


class ProviderRegistry:
    def __init__(self) -> None:
        self._providers: Dict[str, ProviderInfo] = {}

    def register(self, info: ProviderInfo) -> None:
        self._providers[info.name] = info

    def info(self, name: str) -> ProviderInfo:
        if name not in self._providers:
            raise KeyError(f"Provider '{name}' is not registered")
        return self._providers[name]

    def available(self) -> list[str]:
        return sorted(self._providers)

    def entries(self) -> list[ProviderInfo]:
        return [self._providers[name] for name in self.available()]


registry = ProviderRegistry()


def register_default_providers() -> None:
    """Register built-in repositories (idempotent)."""

    from patent_retriever.providers.ops.provider import OpsProvider
    from patent_retriever.providers.uspto.provider import UsptoProvider

    for info in (OpsProvider.provider_info, UsptoProvider.provider_info):
        if info.name not in registry.available():
            registry.register(info)


__all__ = [
    "ProviderCapabilities",
    "ProviderInfo",
    "ProviderRegistry",
    "register_default_providers",
    "registry",
]
