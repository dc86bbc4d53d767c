import logging
import sys
from typing import Optional, TextIO

_global_logger: Optional[logging.Logger] = None

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def setup_basic_logger(level: str = "INFO", stream: Optional[TextIO] = None) -> logging.Logger:
    """
    Создаёт и настраивает базовый логгер.

    Сообщения идут в stderr: stdout занят строками из логов.

    Агрументы:
        level: Уровень логирования (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        stream: Поток для вывода (по умолчанию sys.stderr)

    Возвращает:
        Настроенный объект логгера
    """

    global _global_logger

    logger = logging.getLogger('magelogs')
    level_num = getattr(logging, level.upper())
    logger.setLevel(level_num)

    if not logger.handlers:
        console_handler = logging.StreamHandler(stream or sys.stderr)

        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    for handler in logger.handlers:
        handler.setLevel(level_num)

    _global_logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    Получает глобальный логгер.
    Если логгер ещё не создан, создаёт его с настройками по умолчанию.

    Возвращает:
        Глобальный объект логгера.
    """

    global _global_logger

    if _global_logger is None:
        _global_logger = setup_basic_logger()

    return _global_logger
