import sys
import os

# ====================================================
# 1. НАСТРОЙКА ПУТЕЙ - ДО ЛЮБЫХ ИМПОРТОВ!
# ====================================================

current_dir = os.path.dirname(os.path.abspath(__file__))  # tests/
project_root = os.path.dirname(current_dir)
src_path = os.path.join(project_root, "src")

if src_path not in sys.path:
    sys.path.insert(0, src_path)

# ====================================================
# 2. ФИКСТУРЫ
# ====================================================

import pytest
from pathlib import Path
from typing import List
from unittest.mock import MagicMock

from magelogs.models import Event, FilterConfig, LogLine, OutputHandler
from magelogs.watcher import DEFAULT_FILENAMES, LogFollower, WatcherConfig


class ListHandler(OutputHandler):
    """Собирает все события в список."""

    def __init__(self):
        self.events: List[Event] = []

    def handle(self, entry: Event) -> None:
        self.events.append(entry)

    @property
    def lines(self) -> List[LogLine]:
        return [e for e in self.events if isinstance(e, LogLine)]


@pytest.fixture
def log_dir(tmp_path) -> Path:
    """
    Папка с тремя файлами логов и старым содержимым,
    которое не должно выводиться.
    """
    for name in DEFAULT_FILENAMES:
        (tmp_path / name).write_text(
            "[2024-01-01] main.ERROR old error\n"
            "[2024-01-01] main.WARNING old warning\n",
            encoding="utf-8",
        )
    return tmp_path


@pytest.fixture
def collector() -> ListHandler:
    return ListHandler()


@pytest.fixture
def watcher_config() -> WatcherConfig:
    return WatcherConfig(check_interval=0.05, use_polling=True)


@pytest.fixture
def make_follower(log_dir, collector, watcher_config):
    """Фабрика LogFollower с заглушкой вместо ChangeNotifier."""

    def factory(**flags) -> LogFollower:
        follower = LogFollower(
            path=log_dir,
            filter_config=FilterConfig.from_flags(**flags),
            handlers=[collector],
            config=watcher_config,
            notifier=MagicMock(),
        )
        follower.initialize()
        return follower

    return factory


@pytest.fixture
def append_log():
    """Дописывает текст в конец файла, как это делает приложение."""

    def append(path: Path, text: str) -> None:
        with open(path, "a", encoding="utf-8", newline="") as f:
            f.write(text)

    return append
