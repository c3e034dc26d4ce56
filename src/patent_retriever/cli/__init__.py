"""CLI entry points for Patent Retriever."""

import importlib
from typing import Any, cast

_cli_mod = importlib.import_module("patent_retriever.cli.app")
app = cast(Any, _cli_mod).app
download = cast(Any, _cli_mod).download
providers = cast(Any, _cli_mod).providers
run = cast(Any, _cli_mod).run

__all__ = [
    "app",
    "download",
    "providers",
    "run",
]
