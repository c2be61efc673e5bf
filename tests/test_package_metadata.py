from __future__ import annotations

from importlib import import_module
from typing import Any

import pytest


def test_issuegate_dunder_all_exports() -> None:
    module = import_module("issuegate")
    exported = set(module.__all__)
    expected = {
        "Board",
        "Column",
        "Gateway",
        "GatewayConfig",
        "Request",
        "Response",
        "load_config",
        "__version__",
    }
    assert expected <= exported
    for name in exported:
        assert hasattr(module, name)


def test_version_matches_user_agent() -> None:
    module = import_module("issuegate")
    github_rest = import_module("issuegate.github_rest")
    assert github_rest.USER_AGENT == f"issuegate/{module.__version__}"


def test_module_main_run_invokes_cli(monkeypatch: pytest.MonkeyPatch) -> None:
    module = import_module("issuegate.__main__")
    called: dict[str, Any] = {}

    def fake_main(argv: Any) -> int:
        called["argv"] = argv
        return 123

    monkeypatch.setattr(module, "main", fake_main)

    result = module.run()
    assert called["argv"] is None
    assert result == 123
