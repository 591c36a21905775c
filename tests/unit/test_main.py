"""Unit tests for the service entrypoint."""

from unittest.mock import patch

import pytest

from whatsrelay import main as main_module
from whatsrelay.config import config


def test_parse_args_defaults(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("WHATSRELAY_LOG_LEVEL", raising=False)

    args = main_module.parse_args([])

    assert args.host == config.api.host
    assert args.port == config.api.port
    assert args.log_level == "INFO"


def test_parse_args_overrides():
    args = main_module.parse_args(["--host", "127.0.0.1", "--port", "8080", "--log-level", "DEBUG"])

    assert (args.host, args.port, args.log_level) == ("127.0.0.1", 8080, "DEBUG")


def test_main_exits_nonzero_on_unexpected_error():
    def _boom(coro):
        coro.close()
        raise RuntimeError("boom")

    with (
        patch.object(main_module, "setup_logging"),
        patch.object(main_module.asyncio, "run", side_effect=_boom),
        pytest.raises(SystemExit) as excinfo,
    ):
        main_module.main([])

    assert excinfo.value.code == 1


def test_main_treats_keyboard_interrupt_as_clean_exit():
    def _interrupt(coro):
        coro.close()
        raise KeyboardInterrupt

    with (
        patch.object(main_module, "setup_logging") as setup_logging,
        patch.object(main_module.asyncio, "run", side_effect=_interrupt),
    ):
        main_module.main(["--log-level", "WARNING"])

    setup_logging.assert_called_once_with(level="WARNING")
