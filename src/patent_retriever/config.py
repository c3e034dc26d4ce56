"""Key-value configuration consumed by the retrieval core.

The store is a YAML mapping; credentials fall back to environment variables
so they never have to be written next to the download settings.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml  # type: ignore[import-untyped]

from patent_retriever.errors import ConfigError
from patent_retriever.models import OpsCredentials, UsptoCredentials

OPS_AUTH_URL = "https://ops.epo.org/3.2/auth/accesstoken"
OPS_BASE_URL = "https://ops.epo.org/3.2/rest-services"
USPTO_BASE_URL = "https://api.uspto.gov/api/v1/patent"

OPS_KEY_ENV = "OPS_CONSUMER_KEY"
OPS_SECRET_ENV = "OPS_CONSUMER_SECRET"
USPTO_KEY_ENV = "USPTO_ODP_API"

FILENAME_FORMATS = (
    "publication-number",
    "publication-number-date",
    "publication-number-title",
)

# Older settings files used the Espacenet product name for the OPS keys.
_KEY_ALIASES = {
    "espacenet_consumer_key": "ops_consumer_key",
    "espacenet_secret_key": "ops_consumer_secret",
}


def snake_case(key: str) -> str:
    key = key.replace(".", "_")
    key = re.sub(r"[\-\s]+", "_", key)
    key = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", key)
    return key.lower()


def normalize_options(options: Mapping[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for raw_key, value in options.items():
        key = snake_case(str(raw_key))
        normalized[_KEY_ALIASES.get(key, key)] = value
    return normalized


def load_options(path: str | Path | None) -> dict[str, Any]:
    if path is None:
        return {}
    source = Path(path)
    if not source.exists():
        return {}
    try:
        data = yaml.safe_load(source.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Cannot parse configuration {source}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration {source} must be a mapping")
    return normalize_options(data)


def as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_hosts(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = [value]
    return tuple(str(host).strip().lower() for host in value if str(host).strip())


@dataclass(frozen=True)
class RetrieverSettings:
    user_agent: str = "patent-retriever/0.1"
    http_timeout: float = 30.0
    rate_limit_delay: float = 1.0
    max_rate_limit_retries: int = 10
    page_concurrency: int = 8
    archive_concurrency: int = 5
    token_lifetime_seconds: float = 900.0
    token_safety_margin_seconds: float = 60.0
    ops_auth_url: str = OPS_AUTH_URL
    ops_base_url: str = OPS_BASE_URL
    uspto_base_url: str = USPTO_BASE_URL
    trusted_redirect_hosts: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> RetrieverSettings:
        opts = normalize_options(options)
        settings = cls(
            user_agent=str(opts.get("user_agent", cls.user_agent)),
            http_timeout=float(opts.get("http_timeout", cls.http_timeout)),
            rate_limit_delay=float(
                opts.get("rate_limit_delay", cls.rate_limit_delay)
            ),
            max_rate_limit_retries=int(
                opts.get("max_rate_limit_retries", cls.max_rate_limit_retries)
            ),
            page_concurrency=int(opts.get("page_concurrency", cls.page_concurrency)),
            archive_concurrency=int(
                opts.get("archive_concurrency", cls.archive_concurrency)
            ),
            token_lifetime_seconds=float(
                opts.get("token_lifetime_seconds", cls.token_lifetime_seconds)
            ),
            token_safety_margin_seconds=float(
                opts.get(
                    "token_safety_margin_seconds",
                    cls.token_safety_margin_seconds,
                )
            ),
            ops_auth_url=str(opts.get("ops_auth_url", cls.ops_auth_url)),
            ops_base_url=str(opts.get("ops_base_url", cls.ops_base_url)).rstrip("/"),
            uspto_base_url=str(
                opts.get("uspto_base_url", cls.uspto_base_url)
            ).rstrip("/"),
            trusted_redirect_hosts=_as_hosts(opts.get("trusted_redirect_hosts")),
        )
        if settings.page_concurrency < 1 or settings.archive_concurrency < 1:
            raise ConfigError("Concurrency ceilings must be at least 1")
        if settings.http_timeout <= 0:
            raise ConfigError("http_timeout must be positive")
        return settings


@dataclass(frozen=True)
class OutputSettings:
    download_directory: Path | None = None
    filename_format: str = "publication-number"
    create_subfolders: bool = False

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> OutputSettings:
        opts = normalize_options(options)
        directory = opts.get("download_directory") or None
        fmt = str(opts.get("filename_format") or cls.filename_format)
        if fmt not in FILENAME_FORMATS:
            raise ConfigError(f"Unknown filename_format: {fmt}")
        return cls(
            download_directory=Path(directory).expanduser() if directory else None,
            filename_format=fmt,
            create_subfolders=as_bool(opts.get("create_subfolders", False)),
        )

    def require_directory(self) -> Path:
        if self.download_directory is None:
            raise ConfigError(
                "Download directory not configured (set download_directory)"
            )
        return self.download_directory


def _credential(
    opts: Mapping[str, Any],
    key: str,
    env_name: str,
    environ: Mapping[str, str],
) -> str:
    return str(opts.get(key) or environ.get(env_name) or "").strip()


def ops_credentials(
    options: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> OpsCredentials:
    opts = normalize_options(options)
    env = os.environ if environ is None else environ
    return OpsCredentials(
        consumer_key=_credential(opts, "ops_consumer_key", OPS_KEY_ENV, env),
        consumer_secret=_credential(opts, "ops_consumer_secret", OPS_SECRET_ENV, env),
    )


def uspto_credentials(
    options: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> UsptoCredentials:
    opts = normalize_options(options)
    env = os.environ if environ is None else environ
    return UsptoCredentials(
        api_key=_credential(opts, "uspto_api_key", USPTO_KEY_ENV, env)
    )


def mask_secret(value: str, visible: int = 4) -> str:
    if not value:
        return "MISSING"
    return value[:visible] + "..."


__all__ = [
    "FILENAME_FORMATS",
    "OutputSettings",
    "RetrieverSettings",
    "as_bool",
    "load_options",
    "mask_secret",
    "normalize_options",
    "ops_credentials",
    "snake_case",
    "uspto_credentials",
]
