from __future__ import annotations

from pathlib import Path

import pytest

from patent_retriever.config import (
    OPS_AUTH_URL,
    OutputSettings,
    RetrieverSettings,
    load_options,
    mask_secret,
    normalize_options,
    ops_credentials,
    snake_case,
    uspto_credentials,
)
from patent_retriever.errors import ConfigError


def test_snake_case_handles_camel_and_dashes() -> None:
    assert snake_case("usptoApiKey") == "uspto_api_key"
    assert snake_case("download-directory") == "download_directory"
    assert snake_case("createSubfolders") == "create_subfolders"


def test_load_options_reads_camel_case_yaml(tmp_path: Path) -> None:
    config = tmp_path / "settings.yaml"
    config.write_text(
        "usptoApiKey: abc\n"
        "espacenetConsumerKey: ck\n"
        "espacenetSecretKey: cs\n"
        "downloadDirectory: /tmp/patents\n"
        "filenameFormat: publication-number-date\n"
        "createSubfolders: true\n",
        encoding="utf-8",
    )
    options = load_options(config)
    assert options["uspto_api_key"] == "abc"
    assert options["ops_consumer_key"] == "ck"
    assert options["ops_consumer_secret"] == "cs"

    output = OutputSettings.from_options(options)
    assert output.download_directory == Path("/tmp/patents")
    assert output.filename_format == "publication-number-date"
    assert output.create_subfolders is True


def test_load_options_missing_file_is_empty(tmp_path: Path) -> None:
    assert load_options(tmp_path / "absent.yaml") == {}
    assert load_options(None) == {}


def test_load_options_rejects_non_mapping(tmp_path: Path) -> None:
    config = tmp_path / "list.yaml"
    config.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_options(config)


def test_load_options_rejects_invalid_yaml(tmp_path: Path) -> None:
    config = tmp_path / "broken.yaml"
    config.write_text("key: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_options(config)


def test_retriever_settings_defaults() -> None:
    settings = RetrieverSettings.from_options({})
    assert settings.page_concurrency == 8
    assert settings.archive_concurrency == 5
    assert settings.rate_limit_delay == 1.0
    assert settings.max_rate_limit_retries == 10
    assert settings.ops_auth_url == OPS_AUTH_URL
    assert settings.trusted_redirect_hosts == ()


def test_retriever_settings_overrides() -> None:
    settings = RetrieverSettings.from_options(
        {
            "pageConcurrency": "3",
            "opsBaseUrl": "https://ops.example/rest/",
            "trustedRedirectHosts": ["Files.Example", " "],
        }
    )
    assert settings.page_concurrency == 3
    assert settings.ops_base_url == "https://ops.example/rest"
    assert settings.trusted_redirect_hosts == ("files.example",)


@pytest.mark.parametrize(
    "options",
    [{"page_concurrency": 0}, {"archive_concurrency": -1}, {"http_timeout": 0}],
)
def test_retriever_settings_rejects_bad_values(options: dict) -> None:
    with pytest.raises(ConfigError):
        RetrieverSettings.from_options(options)


def test_output_settings_rejects_unknown_format() -> None:
    with pytest.raises(ConfigError):
        OutputSettings.from_options({"filenameFormat": "by-title"})


def test_output_settings_requires_directory() -> None:
    with pytest.raises(ConfigError):
        OutputSettings.from_options({}).require_directory()


def test_credentials_fall_back_to_environment() -> None:
    environ = {
        "OPS_CONSUMER_KEY": "env-key",
        "OPS_CONSUMER_SECRET": "env-secret",
        "USPTO_ODP_API": "env-api",
    }
    ops = ops_credentials({"opsConsumerKey": "file-key"}, environ)
    assert ops.consumer_key == "file-key"
    assert ops.consumer_secret == "env-secret"
    assert uspto_credentials({}, environ).api_key == "env-api"


def test_credentials_missing_everywhere_are_empty() -> None:
    assert ops_credentials({}, {}).consumer_key == ""
    assert uspto_credentials({}, {}).api_key == ""


def test_normalize_options_maps_legacy_aliases() -> None:
    assert normalize_options({"espacenetSecretKey": "s"}) == {"ops_consumer_secret": "s"}


def test_mask_secret() -> None:
    assert mask_secret("") == "MISSING"
    assert mask_secret("abcdefgh") == "abcd..."
