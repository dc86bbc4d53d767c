import codecs
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from .logger import get_logger
from .models import (
    ChangeEvent,
    Discontinuity,
    Event,
    FilterConfig,
    LogLine,
    NotifierError,
    OffsetTable,
    OutputHandler,
    TrackedFileError,
)
from .notifier import ChangeNotifier
from .severity import match_line

logger = get_logger()

DEFAULT_FILENAMES: Tuple[str, ...] = ("exception.log", "debug.log", "system.log")


class WatcherState(Enum):
    """Состояния мониторинга."""
    STOPPED = 'stopped'
    INITIALIZING = 'initializing'
    WATCHING = 'watching'
    FATAL = 'fatal'


@dataclass
class WatcherConfig:
    """Конфигурация для LogFollower"""
    filenames: Tuple[str, ...] = DEFAULT_FILENAMES
    check_interval: float = 0.1
    encoding: str = 'utf-8'
    use_polling: bool = False

    def __post_init__(self):
        self.filenames = tuple(self.filenames)

    def validate(self) -> None:
        """Валидация конфигурации."""
        if self.check_interval <= 0:
            raise ValueError("check_interval must be positive")
        if not self.filenames:
            raise ValueError("filenames can't be empty")
        try:
            codecs.lookup(self.encoding)
        except LookupError:
            raise ValueError(f"unknown encoding: {self.encoding}") from None


def split_lines(text: str) -> List[str]:
    """
    Делит прочитанный кусок на строки.

    Последняя строка без перевода строки тоже считается строкой:
    если запись ещё не дописана, она может прийти частями.
    """
    lines = text.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


class LogFollower:
    """
    Следит за фиксированным набором файлов в папке
    и выводит дописанные строки с нужными маркерами.
    """

    def __init__(
            self,
            path: str | Path,
            filter_config: Optional[FilterConfig] = None,
            handlers: Optional[List[OutputHandler]] = None,
            config: Optional[WatcherConfig] = None,
            notifier: Optional[ChangeNotifier] = None,
    ):
        """
        Args:
            path (Path | str): Папка с файлами логов
            filter_config (FilterConfig): Какие уровни показывать
            handlers: Список обработчиков для уведомления
            config: Конфигурация мониторинга
            notifier: Источник событий об изменении файлов
        """
        self.path = Path(path)
        self.filter_config = filter_config or FilterConfig()
        self.handlers = handlers or []
        self.config = config or WatcherConfig()
        self.config.validate()
        self.notifier = notifier or ChangeNotifier(
            check_interval=self.config.check_interval,
            use_polling=self.config.use_polling,
        )

        self.offsets = OffsetTable()
        self._state = WatcherState.STOPPED
        self._stop_requested = False

        logger.debug(f"Создан LogFollower для папки {self.path}")

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def tracked_paths(self) -> List[str]:
        return [os.path.abspath(os.path.join(self.path, name)) for name in self.config.filenames]

    def add_handler(self, handler: OutputHandler) -> None:
        """
        Добавляет обработчик в список наблюдателей.

        Args:
            handler (OutputHandler): Обработчик для добавления.
        """

        self.handlers.append(handler)
        logger.debug(f"Добавлен обработчик: {handler.__class__.__name__}")

    def remove_handler(self, handler: OutputHandler) -> None:
        """
        Удаляет обработчик из списка наблюдателей.

        Args:
            handler (OutputHandler): Обработчик для удаления.
        """

        if handler in self.handlers:
            self.handlers.remove(handler)
            logger.debug(f"Удалён обработчик: {handler.__class__.__name__}")

    def _notify_handlers(self, entry: Event) -> None:
        """Уведомляет все обработчики о новой строке или событии."""

        for handler in self.handlers:
            try:
                handler.handle(entry)
            except Exception as e:
                logger.error(f"Ошибка в обработчике {handler.__class__.__name__}: {e}")

    def initialize(self) -> None:
        """
        Запоминает текущую длину каждого файла.
        Старое содержимое файлов никогда не выводится.

        Raises:
            TrackedFileError: Файл не открылся или не читаются его метаданные.
        """
        self._state = WatcherState.INITIALIZING

        for filepath in self.tracked_paths:
            try:
                with open(filepath, 'rb') as f:
                    length = os.fstat(f.fileno()).st_size
            except OSError as e:
                self._state = WatcherState.FATAL
                logger.error(f"Ошибка открытия файла {filepath}: {e}")
                raise TrackedFileError(filepath, e.strerror or str(e)) from e

            self.offsets.initialize(filepath, length)
            logger.debug(f"Файл {filepath}: начальное смещение {length}")

    def _read_delta(self, filepath: str, old_offset: int) -> Tuple[Optional[bytes], int]:
        """
        Читает байты, дописанные после old_offset.

        Returns:
            (данные, новая длина). Данные None, если читать нечего
            или файл временно недоступен.
        """
        try:
            with open(filepath, 'rb') as f:
                new_length = os.fstat(f.fileno()).st_size
                if new_length <= old_offset:
                    return None, new_length
                f.seek(old_offset)
                return f.read(new_length - old_offset), new_length
        except OSError as e:
            # окно ротации: файл пропал между событием и чтением
            logger.debug(f"Файл {filepath} временно недоступен: {e}")
            return None, old_offset

    def handle_event(self, event: ChangeEvent) -> int:
        """
        Обрабатывает одно событие об изменении файла.

        Args:
            event: событие от ChangeNotifier.

        Returns:
            Количество выведенных строк.

        Raises:
            UntrackedFileError: Путь не был заведён при инициализации.
        """
        if not event.is_modified:
            return 0

        filepath = os.path.abspath(event.path)
        old_offset = self.offsets.get(filepath)

        data, new_length = self._read_delta(filepath, old_offset)

        if new_length < old_offset:
            logger.warning(f"Файл {filepath} усечён ({old_offset} -> {new_length} байт), "
                           "продолжаю с текущего конца")
            self.offsets.reset(filepath, new_length)
            self._notify_handlers(Discontinuity(path=filepath, old_offset=old_offset, new_length=new_length))
            return 0

        if not data:
            return 0

        # смещение двигаем до вывода, чтобы не выводить байты дважды
        self.offsets.set(filepath, old_offset + len(data))

        text = data.decode(self.config.encoding, errors='replace')

        emitted = 0
        for line in split_lines(text):
            match_class = match_line(line, self.filter_config)
            if match_class is None:
                continue
            self._notify_handlers(LogLine(path=filepath, text=line, match_class=match_class))
            emitted += 1

        return emitted

    def start(self) -> None:
        """
        Запускает мониторинг. Блокирует до stop() или фатальной ошибки.

        Raises:
            TrackedFileError: Один из файлов не открылся при старте.
            NotifierError: Источник событий перестал работать.
        """
        self.initialize()

        self._stop_requested = False
        logger.info(f"Запуск мониторинга папки: {self.path}")
        logger.info(f"Файлы: {', '.join(self.config.filenames)}")

        try:
            self.notifier.start(self.offsets.paths())
            self._state = WatcherState.WATCHING

            for event in self.notifier.events():
                self.handle_event(event)

            if self._stop_requested:
                logger.info("Получен запрос на остановку, завершение работы...")
        except NotifierError as e:
            self._state = WatcherState.FATAL
            logger.error(f"Источник событий недоступен: {e}")
            raise
        except Exception as e:
            self._state = WatcherState.FATAL
            logger.error(f"Ошибка при исполнении процесса мониторинга {e}", exc_info=True)
            raise
        finally:
            self.notifier.stop()
            if self._state != WatcherState.FATAL:
                self._state = WatcherState.STOPPED

    def request_stop(self) -> None:
        """
        Просит цикл start() завершиться после текущего события.
        Безопасно вызывать из обработчика сигнала: только флаги.
        """
        self._stop_requested = True
        self.notifier.request_stop()

    def stop(self) -> None:
        """
        Останавливает мониторинг файлов
        """
        self.notifier.stop()
        if self._state != WatcherState.FATAL:
            self._state = WatcherState.STOPPED

    def is_running(self) -> bool:
        """
        Проверяет, работает ли мониторинг
        """
        return self._state == WatcherState.WATCHING
