from __future__ import annotations

import logging

from service_registry.config import RegistrySettings
from service_registry.logging_utils import configure_logging, resolve_level


def _reset_root_logger() -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)


def test_configure_logging_uses_settings_level() -> None:
    _reset_root_logger()

    configure_logging(RegistrySettings(log_level="debug"), force=True)

    assert logging.getLogger().level == logging.DEBUG


def test_configure_logging_uses_settings_format() -> None:
    _reset_root_logger()
    settings = RegistrySettings(log_format="%(levelname)s %(message)s")

    configure_logging(settings, force=True)

    (handler,) = logging.getLogger().handlers
    assert handler.formatter._fmt == "%(levelname)s %(message)s"


def test_log_level_comes_from_environment(monkeypatch) -> None:
    _reset_root_logger()
    monkeypatch.setenv("SERVICE_REGISTRY_LOG_LEVEL", "warning")

    configure_logging(RegistrySettings(), force=True)

    assert logging.getLogger().level == logging.WARNING


def test_unknown_level_falls_back_to_info() -> None:
    assert resolve_level("chatty") == logging.INFO
    assert resolve_level(" error ") == logging.ERROR


def test_httpx_logger_is_quieted() -> None:
    _reset_root_logger()

    configure_logging(RegistrySettings(log_level="debug"), force=True)

    assert logging.getLogger("httpx").level == logging.WARNING


def test_configure_logging_is_idempotent() -> None:
    _reset_root_logger()
    settings = RegistrySettings()

    configure_logging(settings, force=True)
    first_count = len(logging.getLogger().handlers)

    configure_logging(settings)
    second_count = len(logging.getLogger().handlers)

    assert first_count == second_count == 1
