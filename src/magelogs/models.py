
import copy
import json
import os
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, TextIO


class Severity(Enum):
    """Уровни, которые пользователь может включить флагами."""
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class MatchClass(Enum):
    """Класс совпадения строки по маркерам main.*"""
    ERROR = "ERROR"      # main.ERROR и main.CRITICAL
    WARNING = "WARNING"  # main.WARNING


class ChangeKind(Enum):
    MODIFIED = "modified"
    OTHER = "other"


# ошибки

class MagelogsError(Exception):
    """Базовое исключение magelogs."""


class UntrackedFileError(MagelogsError, KeyError):
    """Путь отсутствует в таблице смещений."""

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"file is not tracked: {self.path}"


class TrackedFileError(MagelogsError):
    """Не удалось открыть один из отслеживаемых файлов при старте."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"cannot open {path}: {reason}")
        self.path = path
        self.reason = reason


class NotifierError(MagelogsError):
    """Источник событий файловой системы перестал работать."""


# события

@dataclass(kw_only=True)
class Event(ABC):
    """
    Абстрактный базовый класс для всех событий системы.

    Все события должны:
    1. Иметь временную метку;
    2. Уметь сериализовываться в словарь/JSON;
    3. Иметь строковое представление.
    """
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.__class__.__name__,
            "timestamp": self.timestamp.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def __str__(self) -> str:
        return f"[{self.__class__.__name__}]: {self.timestamp}"


@dataclass(kw_only=True)
class ChangeEvent(Event):
    """
    Уведомление об изменении файла.

    Args:
        path (str): Абсолютный путь к изменённому файлу;
        kind (ChangeKind): Вид изменения. Обрабатывается только MODIFIED.
    """
    path: str
    kind: ChangeKind = ChangeKind.MODIFIED

    @property
    def is_modified(self) -> bool:
        return self.kind is ChangeKind.MODIFIED

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "path": self.path,
            "kind": self.kind.value,
        })
        return base_dict

    def __str__(self) -> str:
        return f"[CHANGE:{self.kind.value}] {self.path}"


@dataclass(kw_only=True)
class LogLine(Event):
    """
    Data Transfer Object (DTO) для найденной строки лога.

    Args:
        path (str): Полный путь к файлу;
        text (str): Строка лога без символа перевода строки;
        match_class (MatchClass): Класс совпадения (ERROR или WARNING).
    """
    path: str
    text: str
    match_class: MatchClass

    @property
    def filename(self) -> str:
        return os.path.basename(self.path)

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "path": self.path,
            "filename": self.filename,
            "text": self.text,
            "match_class": self.match_class.value,
        })
        return base_dict

    def __str__(self) -> str:
        return f"{self.filename} --> {self.text}"


@dataclass(kw_only=True)
class Discontinuity(Event):
    """Файл стал короче сохранённого смещения (усечение или ротация)."""
    path: str
    old_offset: int
    new_length: int

    def to_dict(self) -> Dict[str, Any]:
        base_dict = super().to_dict()
        base_dict.update({
            "path": self.path,
            "old_offset": self.old_offset,
            "new_length": self.new_length,
        })
        return base_dict

    def __str__(self) -> str:
        return f"[DISCONTINUITY] {self.path} ({self.old_offset} → {self.new_length})"


# таблица смещений

@dataclass
class TrackedFile:
    path: str
    offset: int = 0

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


class OffsetTable:
    """
    Таблица: абсолютный путь -> последнее прочитанное смещение в байтах.

    Все пути заводятся через initialize() при старте, поэтому
    обращение к неизвестному пути - ошибка программиста.
    Потокобезопасность не нужна: таблицу меняет только LogFollower.
    """

    def __init__(self) -> None:
        self._files: Dict[str, TrackedFile] = {}

    def initialize(self, path: str, initial_length: int) -> TrackedFile:
        if initial_length < 0:
            raise ValueError("initial_length can't be negative")
        tracked = TrackedFile(path=path, offset=initial_length)
        self._files[path] = tracked
        return tracked

    def get(self, path: str) -> int:
        return self._lookup(path).offset

    def set(self, path: str, offset: int) -> None:
        """Сдвигает смещение вперёд. Назад - только через reset()."""
        tracked = self._lookup(path)
        if offset < 0:
            raise ValueError("offset can't be negative")
        if offset < tracked.offset:
            raise ValueError(
                f"offset for {path} can't move backwards ({tracked.offset} -> {offset})"
            )
        tracked.offset = offset

    def reset(self, path: str, offset: int) -> None:
        tracked = self._lookup(path)
        if offset < 0:
            raise ValueError("offset can't be negative")
        tracked.offset = offset

    def paths(self) -> List[str]:
        return list(self._files)

    def files(self) -> List[TrackedFile]:
        return list(self._files.values())

    def _lookup(self, path: str) -> TrackedFile:
        try:
            return self._files[path]
        except KeyError:
            raise UntrackedFileError(path) from None

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)


# конфигурация фильтра

@dataclass(frozen=True)
class FilterConfig:
    """
    Какие уровни показывать.

    Args:
        enabled: Включённые флагами уровни (может быть пустым);
        all_mode: Показывать всё, что совпало с любым маркером.
    """
    enabled: FrozenSet[Severity] = frozenset()
    all_mode: bool = False

    @classmethod
    def from_flags(cls,
                   error: bool = False,
                   warning: bool = False,
                   critical: bool = False,
                   all_issues: bool = False) -> "FilterConfig":
        enabled = set()
        # --all включает и ERROR, как в исходной утилите
        if all_issues or error:
            enabled.add(Severity.ERROR)
        if warning:
            enabled.add(Severity.WARNING)
        if critical:
            enabled.add(Severity.CRITICAL)
        return cls(enabled=frozenset(enabled), all_mode=all_issues)

    @classmethod
    def from_severities(cls, severities: Iterable[Severity], all_mode: bool = False) -> "FilterConfig":
        return cls(enabled=frozenset(severities), all_mode=all_mode)

    @property
    def is_empty(self) -> bool:
        return not self.enabled and not self.all_mode

    def is_enabled(self, severity: Severity) -> bool:
        return severity in self.enabled


# обработчики вывода (паттерн Наблюдатель)

class OutputHandler(ABC):
    """Абстрактный класс обработчика вывода."""

    @abstractmethod
    def handle(self, entry: Event) -> None:
        """
        Обрабатывает событие.
        Вызывается для каждой найденной строки (LogLine)
        и для системных событий (Discontinuity).

        Args:
            entry (Event): Событие для обработки
        """
        pass


class ConsoleHandler(OutputHandler):
    """Обработчик для вывода в консоль."""

    def __init__(self, use_colors: bool = True, stream: Optional[TextIO] = None):
        from .formatter import ColorFormatter
        self.formatter = ColorFormatter(use_colors=use_colors)
        self.stream = stream

    def handle(self, entry: Event) -> None:
        """
        Выводит LogLine в консоль.

        Args:
            entry: Объект LogLine для вывода.
        """
        if isinstance(entry, LogLine):
            formatted_line = self.formatter(entry.filename, entry.text, entry.match_class)
            stream = self.stream or sys.stdout
            stream.write(formatted_line + "\n")
            stream.flush()


class StatsCollector(OutputHandler):
    """Обработчик для сбора статистики."""

    def __init__(self):
        self.stats = {
            "log_lines": {
                "total_lines": 0,
                "lines_by_class": {
                    MatchClass.ERROR.value: 0,
                    MatchClass.WARNING.value: 0,
                },
                "by_source": {}
            },
            "discontinuities": {
                "total": 0,
                "by_source": {}
            },
            "timing": {
                "start_time": datetime.now(),
                "last_line": None
            }
        }

    def handle(self, entry: Event) -> None:
        if isinstance(entry, LogLine):
            self._handle_log_line(entry)
        elif isinstance(entry, Discontinuity):
            self._handle_discontinuity(entry)

    def _handle_log_line(self, entry: LogLine) -> None:
        lines = self.stats["log_lines"]
        lines["total_lines"] += 1
        lines["lines_by_class"][entry.match_class.value] += 1

        source = entry.filename
        lines["by_source"][source] = lines["by_source"].get(source, 0) + 1

        self.stats["timing"]["last_line"] = entry.timestamp

    def _handle_discontinuity(self, event: Discontinuity) -> None:
        discontinuities = self.stats["discontinuities"]
        discontinuities["total"] += 1

        source = os.path.basename(event.path)
        discontinuities["by_source"][source] = discontinuities["by_source"].get(source, 0) + 1

    def get_stats(self) -> Dict[str, Any]:
        """Возвращает статистику."""

        stats = copy.deepcopy(self.stats)

        duration = datetime.now() - stats["timing"]["start_time"]
        stats["duration_seconds"] = duration.total_seconds()

        return stats
