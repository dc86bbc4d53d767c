import os
import pytest
from pathlib import Path
from unittest.mock import MagicMock

from magelogs.models import (
    ChangeEvent,
    ChangeKind,
    Discontinuity,
    FilterConfig,
    MatchClass,
    NotifierError,
    TrackedFileError,
    UntrackedFileError,
)
from magelogs.watcher import LogFollower, WatcherConfig, WatcherState, split_lines


def modified(path: Path) -> ChangeEvent:
    return ChangeEvent(path=str(path), kind=ChangeKind.MODIFIED)


class FakeNotifier:
    """Отдаёт заранее заданные события, потом канал закрывается."""

    def __init__(self, events, error=None):
        self._events = list(events)
        self._error = error
        self.started_with = None
        self.stopped = False

    def start(self, paths):
        self.started_with = list(paths)

    def events(self):
        yield from self._events
        if self._error is not None:
            raise self._error

    def stop(self):
        self.stopped = True


class TestWatcherConfig:
    """Тесты конфигурации."""

    def test_defaults(self) -> None:
        config = WatcherConfig()

        assert config.filenames == ("exception.log", "debug.log", "system.log")
        assert config.check_interval == 0.1
        assert config.encoding == "utf-8"
        assert config.use_polling is False

    def test_validation(self) -> None:
        with pytest.raises(ValueError, match="check_interval must be positive"):
            WatcherConfig(check_interval=0).validate()

        with pytest.raises(ValueError, match="filenames can't be empty"):
            WatcherConfig(filenames=()).validate()

        with pytest.raises(ValueError, match="unknown encoding"):
            WatcherConfig(encoding="no-such-codec").validate()

    def test_follower_validates_config(self, log_dir) -> None:
        with pytest.raises(ValueError):
            LogFollower(log_dir, config=WatcherConfig(check_interval=-1), notifier=MagicMock())


class TestSplitLines:

    def test_trailing_newline_is_not_a_line(self) -> None:
        assert split_lines("a\nb\n") == ["a", "b"]

    def test_partial_last_line_is_kept(self) -> None:
        assert split_lines("a\npart") == ["a", "part"]

    def test_crlf(self) -> None:
        assert split_lines("a\r\nb\r\n") == ["a", "b"]

    def test_empty_lines_in_the_middle(self) -> None:
        assert split_lines("a\n\nb\n") == ["a", "", "b"]


class TestLogFollowerInitialization:
    """Тесты инициализации LogFollower."""

    def test_offsets_seeded_with_file_length(self, make_follower, log_dir) -> None:
        follower = make_follower(error=True)

        assert len(follower.offsets) == 3
        for name in ("exception.log", "debug.log", "system.log"):
            path = str(log_dir / name)
            assert follower.offsets.get(path) == os.path.getsize(path)

    def test_tracked_paths_are_absolute(self, log_dir) -> None:
        follower = LogFollower(log_dir, notifier=MagicMock())

        assert all(os.path.isabs(p) for p in follower.tracked_paths)
        assert [os.path.basename(p) for p in follower.tracked_paths] == [
            "exception.log", "debug.log", "system.log"
        ]

    def test_missing_file_is_fatal(self, log_dir) -> None:
        (log_dir / "debug.log").unlink()
        follower = LogFollower(log_dir, notifier=MagicMock())

        with pytest.raises(TrackedFileError) as exc_info:
            follower.initialize()

        assert exc_info.value.path.endswith("debug.log")
        assert "debug.log" in str(exc_info.value)
        assert follower.state == WatcherState.FATAL

    def test_custom_filenames(self, tmp_path) -> None:
        (tmp_path / "app.log").write_text("hello\n")
        follower = LogFollower(
            tmp_path,
            config=WatcherConfig(filenames=("app.log",)),
            notifier=MagicMock(),
        )
        follower.initialize()

        assert follower.offsets.paths() == [str(tmp_path / "app.log")]


class TestLogFollowerEvents:
    """Тесты обработки событий."""

    def test_no_replay_of_existing_content(self, make_follower, collector, log_dir) -> None:
        follower = make_follower(all_issues=True)

        assert follower.handle_event(modified(log_dir / "system.log")) == 0
        assert collector.events == []

    def test_appended_error_is_emitted(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        path = log_dir / "exception.log"

        append_log(path, "[2024-01-02] main.ERROR boom\n")
        emitted = follower.handle_event(modified(path))

        assert emitted == 1
        line = collector.lines[0]
        assert line.text == "[2024-01-02] main.ERROR boom"
        assert line.match_class == MatchClass.ERROR
        assert line.filename == "exception.log"
        assert follower.offsets.get(str(path)) == os.path.getsize(path)

    def test_warning_filtered_out_without_flag(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        path = log_dir / "debug.log"

        append_log(path, "main.WARNING low disk\nplain info line\n")

        assert follower.handle_event(modified(path)) == 0
        assert collector.lines == []
        # строки не показаны, но прочитаны
        assert follower.offsets.get(str(path)) == os.path.getsize(path)

    def test_order_preserved(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(all_issues=True)
        path = log_dir / "system.log"

        append_log(path, "main.ERROR first\nmain.WARNING second\ninfo\nmain.CRITICAL third\n")
        follower.handle_event(modified(path))

        assert [l.text for l in collector.lines] == [
            "main.ERROR first", "main.WARNING second", "main.CRITICAL third"
        ]
        assert [l.match_class for l in collector.lines] == [
            MatchClass.ERROR, MatchClass.WARNING, MatchClass.ERROR
        ]

    def test_repeated_event_is_idempotent(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        path = log_dir / "exception.log"

        append_log(path, "main.ERROR once\n")
        follower.handle_event(modified(path))
        offset = follower.offsets.get(str(path))

        assert follower.handle_event(modified(path)) == 0
        assert follower.offsets.get(str(path)) == offset
        assert len(collector.lines) == 1

    def test_offsets_are_monotonic_over_appends(self, make_follower, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        path = log_dir / "debug.log"
        seen = [follower.offsets.get(str(path))]

        for i in range(5):
            append_log(path, f"line {i}\n")
            follower.handle_event(modified(path))
            seen.append(follower.offsets.get(str(path)))

        assert seen == sorted(seen)
        assert seen[-1] == os.path.getsize(path)

    def test_files_are_independent(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)

        append_log(log_dir / "debug.log", "main.ERROR from debug\n")
        append_log(log_dir / "system.log", "main.ERROR from system\n")
        follower.handle_event(modified(log_dir / "system.log"))
        follower.handle_event(modified(log_dir / "debug.log"))

        assert [l.filename for l in collector.lines] == ["system.log", "debug.log"]

    def test_other_event_kinds_are_ignored(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        path = log_dir / "exception.log"
        offset = follower.offsets.get(str(path))

        append_log(path, "main.ERROR boom\n")
        emitted = follower.handle_event(ChangeEvent(path=str(path), kind=ChangeKind.OTHER))

        assert emitted == 0
        assert follower.offsets.get(str(path)) == offset
        assert collector.events == []

    def test_untracked_path_is_an_error(self, make_follower, tmp_path) -> None:
        follower = make_follower(error=True)
        stray = tmp_path / "other.log"
        stray.write_text("main.ERROR\n")

        with pytest.raises(UntrackedFileError):
            follower.handle_event(modified(stray))

    def test_partial_line_is_emitted_immediately(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        path = log_dir / "exception.log"

        append_log(path, "main.ERROR half")
        follower.handle_event(modified(path))
        append_log(path, " written\n")
        follower.handle_event(modified(path))

        # хвост без маркера уже не проходит фильтр
        assert [l.text for l in collector.lines] == ["main.ERROR half"]

    def test_undecodable_bytes_are_replaced(self, make_follower, collector, log_dir) -> None:
        follower = make_follower(error=True)
        path = log_dir / "exception.log"

        with open(path, "ab") as f:
            f.write(b"main.ERROR bad \xff byte\n")
        follower.handle_event(modified(path))

        assert collector.lines[0].text == "main.ERROR bad \ufffd byte"


class TestLogFollowerDiscontinuities:
    """Тесты усечения и временно пропавших файлов."""

    def test_truncation_emits_nothing_and_resyncs(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        path = log_dir / "system.log"

        path.write_text("main.ERROR new\n", encoding="utf-8")
        new_length = os.path.getsize(path)

        assert follower.handle_event(modified(path)) == 0
        assert collector.lines == []
        assert follower.offsets.get(str(path)) == new_length

        discontinuities = [e for e in collector.events if isinstance(e, Discontinuity)]
        assert len(discontinuities) == 1
        assert discontinuities[0].new_length == new_length

        append_log(path, "main.ERROR after truncation\n")
        follower.handle_event(modified(path))

        assert [l.text for l in collector.lines] == ["main.ERROR after truncation"]

    def test_missing_file_is_treated_as_no_content(self, make_follower, collector, log_dir) -> None:
        follower = make_follower(error=True)
        path = log_dir / "debug.log"
        offset = follower.offsets.get(str(path))

        path.unlink()

        assert follower.handle_event(modified(path)) == 0
        assert follower.offsets.get(str(path)) == offset
        assert collector.events == []

    def test_handler_errors_do_not_stop_processing(self, make_follower, collector, log_dir, append_log) -> None:
        follower = make_follower(error=True)
        broken = MagicMock()
        broken.handle.side_effect = RuntimeError("handler failed")
        follower.handlers.insert(0, broken)
        path = log_dir / "exception.log"

        append_log(path, "main.ERROR one\nmain.ERROR two\n")

        assert follower.handle_event(modified(path)) == 2
        assert len(collector.lines) == 2


class TestLogFollowerLifecycle:
    """Тесты запуска и остановки."""

    def test_start_processes_events_in_order(self, log_dir, collector, append_log) -> None:
        path = log_dir / "exception.log"
        notifier = FakeNotifier([])
        follower = LogFollower(
            log_dir,
            filter_config=FilterConfig.from_flags(all_issues=True),
            handlers=[collector],
            notifier=notifier,
        )

        append_log(path, "main.WARNING before start\n")

        def events():
            append_log(path, "main.ERROR first\n")
            yield modified(path)
            append_log(path, "main.WARNING second\n")
            yield modified(path)

        notifier.events = events
        follower.start()

        assert [l.text for l in collector.lines] == ["main.ERROR first", "main.WARNING second"]
        assert sorted(notifier.started_with) == sorted(follower.tracked_paths)
        assert notifier.stopped is True
        assert follower.state == WatcherState.STOPPED

    def test_broken_channel_is_fatal(self, log_dir) -> None:
        notifier = FakeNotifier([], error=NotifierError("channel closed"))
        follower = LogFollower(log_dir, notifier=notifier)

        with pytest.raises(NotifierError):
            follower.start()

        assert follower.state == WatcherState.FATAL
        assert notifier.stopped is True

    def test_missing_file_prevents_start(self, log_dir) -> None:
        (log_dir / "exception.log").unlink()
        notifier = FakeNotifier([])
        follower = LogFollower(log_dir, notifier=notifier)

        with pytest.raises(TrackedFileError):
            follower.start()

        assert notifier.started_with is None

    def test_stop(self, log_dir) -> None:
        notifier = FakeNotifier([])
        follower = LogFollower(log_dir, notifier=notifier)
        follower._state = WatcherState.WATCHING
        assert follower.is_running() is True

        follower.stop()

        assert notifier.stopped is True
        assert follower.is_running() is False
        assert follower.state == WatcherState.STOPPED

    def test_add_and_remove_handler(self, log_dir, collector) -> None:
        follower = LogFollower(log_dir, notifier=MagicMock())

        follower.add_handler(collector)
        assert collector in follower.handlers

        follower.remove_handler(collector)
        assert collector not in follower.handlers

    def test_request_stop_only_sets_flags(self, log_dir) -> None:
        notifier = MagicMock()
        follower = LogFollower(log_dir, notifier=notifier)

        follower.request_stop()

        notifier.request_stop.assert_called_once_with()
        notifier.stop.assert_not_called()
