from .formatter import ColorFormatter
from .watcher import LogFollower, WatcherConfig, WatcherState
from .notifier import ChangeNotifier
from .severity import classify_line, match_line
from .cli import main
from .logger import get_logger
from .models import (
    Severity,
    MatchClass,
    ChangeKind,
    Event,
    ChangeEvent,
    LogLine,
    Discontinuity,
    TrackedFile,
    OffsetTable,
    FilterConfig,
    OutputHandler,
    ConsoleHandler,
    StatsCollector,
    MagelogsError,
    UntrackedFileError,
    TrackedFileError,
    NotifierError,
)

__version__ = "0.1.0"

__all__ = [
    "ColorFormatter",
    "LogFollower",
    "WatcherConfig",
    "WatcherState",
    "ChangeNotifier",
    "classify_line",
    "match_line",
    "main",
    "get_logger",
    "Severity",
    "MatchClass",
    "ChangeKind",
    "Event",
    "ChangeEvent",
    "LogLine",
    "Discontinuity",
    "TrackedFile",
    "OffsetTable",
    "FilterConfig",
    "OutputHandler",
    "ConsoleHandler",
    "StatsCollector",
    "MagelogsError",
    "UntrackedFileError",
    "TrackedFileError",
    "NotifierError",
]
