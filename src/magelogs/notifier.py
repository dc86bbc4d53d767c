import os
import queue
from typing import Dict, Iterable, Iterator, List, Optional, Set

from watchdog.events import EVENT_TYPE_MODIFIED, FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from .logger import get_logger
from .models import ChangeEvent, ChangeKind, NotifierError

logger = get_logger()

_STOP = object()


def watched_locations(path: str) -> Dict[str, str]:
    """
    Пути, по которым приходят события для path: сам путь и,
    если это симлинк в другую папку, его реальный адрес.

    Returns:
        Словарь наблюдаемый путь -> отслеживаемый путь.
    """
    path = os.path.abspath(path)
    locations = {path: path}

    real = os.path.realpath(path)
    if os.path.dirname(real) != os.path.realpath(os.path.dirname(path)):
        locations[real] = path
    return locations


class TrackedFilesHandler(FileSystemEventHandler):
    """
    Переводит события watchdog в ChangeEvent и кладёт их в общую очередь.

    Наблюдается родительская папка, поэтому события по чужим
    файлам и по самой папке отбрасываются. События по цели
    симлинка приходят под именем самого симлинка.
    """

    def __init__(self, paths: Iterable[str], channel: "queue.SimpleQueue"):
        super().__init__()
        self.paths: Dict[str, str] = {}
        for path in paths:
            self.paths.update(watched_locations(path))
        self.channel = channel

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return

        tracked = self.paths.get(os.path.abspath(os.fsdecode(event.src_path)))
        if tracked is None:
            return

        kind = ChangeKind.MODIFIED if event.event_type == EVENT_TYPE_MODIFIED else ChangeKind.OTHER
        self.channel.put(ChangeEvent(path=tracked, kind=kind))


class ChangeNotifier:
    """
    Обёртка над watchdog: единый упорядоченный канал событий для LogFollower.

    Для каждой папки сначала пробуется нативный Observer (inotify и т.п.),
    при ошибке - PollingObserver. Если не получилось и так,
    файл просто не отслеживается.
    """

    def __init__(self, check_interval: float = 0.1, use_polling: bool = False):
        self.check_interval = check_interval
        self.use_polling = use_polling

        # SimpleQueue.put можно вызывать из обработчика сигнала
        self._queue: "queue.SimpleQueue" = queue.SimpleQueue()
        self._observers: List[BaseObserver] = []
        self._native: Optional[BaseObserver] = None
        self._polling: Optional[BaseObserver] = None
        self._registered: Set[str] = set()
        self._started = False
        self._stop_requested = False
        self._stopped = False

    @property
    def registered_paths(self) -> Set[str]:
        return set(self._registered)

    def start(self, paths: Iterable[str]) -> None:
        """
        Регистрирует файлы и запускает потоки наблюдения.

        Raises:
            NotifierError: Не удалось зарегистрировать ни одного файла.
        """
        paths = [os.path.abspath(p) for p in paths]
        handler = TrackedFilesHandler(paths, self._queue)

        by_directory: Dict[str, List[str]] = {}
        for path in paths:
            for location in watched_locations(path):
                by_directory.setdefault(os.path.dirname(location), []).append(path)

        self._started = True
        self._stop_requested = False
        self._stopped = False

        failed: Set[str] = set()
        for directory, dir_paths in by_directory.items():
            if self._schedule(handler, directory):
                self._registered.update(dir_paths)
            else:
                failed.update(dir_paths)

        for path in sorted(failed - self._registered):
            logger.warning(f"Файл {path} не будет отслеживаться")

        if not self._registered:
            self.stop()
            raise NotifierError("no file could be registered for change notifications")

        logger.debug(f"Отслеживается файлов: {len(self._registered)}")

    def _schedule(self, handler: FileSystemEventHandler, directory: str) -> bool:
        if not self.use_polling:
            try:
                self._native_observer().schedule(handler, directory, recursive=False)
                logger.debug(f"Нативное наблюдение за {directory}")
                return True
            except OSError as e:
                logger.warning(f"Нативное наблюдение за {directory} недоступно ({e}), переход на опрос")

        try:
            self._polling_observer().schedule(handler, directory, recursive=False)
            logger.debug(f"Опрос {directory} каждые {self.check_interval:.2f} сек")
            return True
        except OSError as e:
            logger.warning(f"Не удалось настроить опрос {directory}: {e}")
            return False

    def _native_observer(self) -> BaseObserver:
        if self._native is None:
            self._native = self._start_observer(Observer(timeout=self.check_interval))
        return self._native

    def _polling_observer(self) -> BaseObserver:
        if self._polling is None:
            self._polling = self._start_observer(PollingObserver(timeout=self.check_interval))
        return self._polling

    def _start_observer(self, observer: BaseObserver) -> BaseObserver:
        # запускаем до schedule(), чтобы ошибки регистрации всплывали сразу
        observer.daemon = True
        observer.start()
        self._observers.append(observer)
        return observer

    def get_event(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """
        Ждёт следующее событие.

        Returns:
            ChangeEvent или None, если время ожидания вышло или канал остановлен.

        Raises:
            NotifierError: Источник событий умер без вызова stop().
        """
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            self._check_alive()
            return None

        if item is _STOP:
            # оставляем маркер для других читателей
            self._queue.put(_STOP)
            return None
        return item

    def events(self) -> Iterator[ChangeEvent]:
        """Блокирующий поток событий до вызова stop() или request_stop()."""
        if not self._started:
            raise NotifierError("notifier is not started")

        while not (self._stop_requested or self._stopped):
            event = self.get_event(timeout=self.check_interval)
            if event is not None:
                yield event

    def _check_alive(self) -> None:
        if self._stop_requested or self._stopped or not self._started:
            return
        if not any(observer.is_alive() for observer in self._observers):
            raise NotifierError("all change observers have stopped")

        # поток Observer живёт, даже когда его эмиттеры упали (папку удалили)
        emitters = [emitter for observer in self._observers for emitter in observer.emitters]
        if not any(emitter.is_alive() for emitter in emitters):
            raise NotifierError("all change emitters have stopped")

    def request_stop(self) -> None:
        """
        Просит events() завершиться. Только выставляет флаг,
        поэтому безопасно для обработчиков сигналов.
        """
        self._stop_requested = True

    def stop(self) -> None:
        """Останавливает все наблюдатели и освобождает их ресурсы."""
        if self._stopped:
            return
        self._stopped = True
        self._queue.put(_STOP)

        for observer in self._observers:
            observer.stop()
        for observer in self._observers:
            if observer.is_alive():
                observer.join(timeout=1.0)

        self._observers.clear()
        self._native = None
        self._polling = None
