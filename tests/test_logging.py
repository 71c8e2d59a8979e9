"""Tests for utils/logging.py."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from agentcore.utils import logging as logging_utils


@pytest.fixture(autouse=True)
def _restore_root_logger(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    noisy_levels = {name: logging.getLogger(name).level for name in logging_utils._NOISY_LOGGERS}
    monkeypatch.setattr(logging_utils, "_CONFIGURED", False)
    monkeypatch.setattr(logging_utils, "_LOG_PATH", None)
    yield
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)
    for name, level in noisy_levels.items():
        logging.getLogger(name).setLevel(level)


def test_setup_logging_writes_to_file(tmp_path: Path) -> None:
    path = logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console=False)

    logging.getLogger("agentcore.test").info("hello log")
    for handler in logging.getLogger().handlers:
        handler.flush()

    assert path == tmp_path / "agentcore.log"
    assert logging_utils.get_log_path() == path
    assert "agentcore.test | hello log" in path.read_text(encoding="utf-8")


def test_env_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AGENTCORE_LOG_DIR", str(tmp_path / "env-logs"))

    path = logging_utils.setup_logging(console=False)

    assert path.parent == tmp_path / "env-logs"


def test_second_call_is_a_no_op_unless_forced(tmp_path: Path) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a", console=False)

    assert logging_utils.setup_logging(log_dir=tmp_path / "b", console=False) == first
    assert logging_utils.setup_logging(log_dir=tmp_path / "b", console=False, force=True) == tmp_path / "b" / "agentcore.log"


def test_console_level_and_noisy_loggers(tmp_path: Path) -> None:
    logging_utils.setup_logging(logging.DEBUG, log_dir=tmp_path, console_level=logging.WARNING)

    console = [
        handler
        for handler in logging.getLogger().handlers
        if type(handler) is logging.StreamHandler
    ]
    assert [handler.level for handler in console] == [logging.WARNING]
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("openai").level == logging.WARNING
