from __future__ import annotations

import importlib

import pytest

main_module = importlib.import_module("contentapi.__main__")


@pytest.fixture
def uvicorn_calls(monkeypatch) -> list[tuple[str, dict]]:
    calls: list[tuple[str, dict]] = []
    monkeypatch.setattr(main_module.uvicorn, "run", lambda app_path, **kwargs: calls.append((app_path, kwargs)))
    for name in ("CONTENTAPI_HOST", "CONTENTAPI_PORT", "PORT", "CONTENTAPI_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    return calls


def test_main_serves_app_with_defaults(uvicorn_calls) -> None:
    assert main_module.main() == 0

    assert uvicorn_calls == [
        (
            "contentapi.app:app",
            {"host": "0.0.0.0", "port": 8000, "log_level": "info", "log_config": None},
        )
    ]


def test_contentapi_port_wins_over_platform_port(uvicorn_calls, monkeypatch) -> None:
    monkeypatch.setenv("CONTENTAPI_HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("CONTENTAPI_PORT", "5050")
    monkeypatch.setenv("CONTENTAPI_LOG_LEVEL", "DEBUG")

    main_module.main()

    _, options = uvicorn_calls[0]
    assert options["host"] == "127.0.0.1"
    assert options["port"] == 5050
    assert options["log_level"] == "debug"


def test_platform_port_is_used_when_contentapi_port_is_unset(uvicorn_calls, monkeypatch) -> None:
    monkeypatch.setenv("PORT", "9000")

    main_module.main()

    assert uvicorn_calls[0][1]["port"] == 9000


@pytest.mark.parametrize("raw", ["http", "0", "70000"])
def test_bad_port_stops_before_serving(uvicorn_calls, monkeypatch, raw: str) -> None:
    monkeypatch.setenv("CONTENTAPI_PORT", raw)

    with pytest.raises(SystemExit) as exc:
        main_module.main()

    assert "contentapi" in str(exc.value)
    assert uvicorn_calls == []
