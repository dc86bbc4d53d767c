import argparse
import signal
import sys

from pathlib import Path
from typing import List, Optional

from .formatter import ColorFormatter
from .logger import get_logger, setup_basic_logger
from .models import (
    ConsoleHandler,
    FilterConfig,
    NotifierError,
    StatsCollector,
    TrackedFileError,
)
from .watcher import DEFAULT_FILENAMES, LogFollower, WatcherConfig

logger = get_logger()


def setup_arg_parser() -> argparse.ArgumentParser:
    """Настраивает парсер аргументов командной строки."""

    parser = argparse.ArgumentParser(
        prog="magelogs",
        description="magelogs - вывод новых WARNING/ERROR/CRITICAL строк из логов в реальном времени",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Отслеживаемые файлы: {', '.join(DEFAULT_FILENAMES)}

Примеры использования:
  %(prog)s -p /var/www/var/log -e
  %(prog)s -p /var/www/var/log -e -w
  %(prog)s -p /var/www/var/log --all --no-colors
  %(prog)s -p /mnt/share/log -a --polling --interval 0.5
        """
    )

    parser.add_argument(
        "-p",
        "--path",
        type=str,
        required=True,
        help="Путь к папке с логами"
    )

    parser.add_argument(
        "-a",
        "--all",
        dest="all_issues",
        action="store_true",
        help="Выводить все строки с main.ERROR, main.CRITICAL и main.WARNING"
    )

    parser.add_argument(
        "-e",
        "--error",
        action="store_true",
        help="Выводить строки с main.ERROR"
    )

    parser.add_argument(
        "-w",
        "--warning",
        action="store_true",
        help="Выводить строки с main.WARNING"
    )

    parser.add_argument(
        "-c",
        "--critical",
        action="store_true",
        help="Выводить строки с main.CRITICAL"
    )

    parser.add_argument(
        "--no-colors",
        action="store_true",
        help="Отключить цветной вывод"
    )

    parser.add_argument(
        "--polling",
        action="store_true",
        help="Опрашивать файлы вместо системных уведомлений"
    )

    parser.add_argument(
        "--interval",
        "-i",
        type=float,
        default=0.1,
        help="Интервал опроса в секундах (по умолчанию: 0.1)"
    )

    parser.add_argument(
        "--encoding",
        type=str,
        default="utf-8",
        help="Кодировка файлов логов (по умолчанию: utf-8)"
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Уровень служебных сообщений в stderr (по умолчанию: WARNING)"
    )

    parser.add_argument(
        "--stats",
        "-s",
        action="store_true",
        help="Выводить статистику при завершении"
    )

    return parser


def validate_args(args: argparse.Namespace) -> None:
    """Валидирует аргументы командной строки."""

    if args.interval <= 0:
        raise ValueError("Интервал проверки должен быть положительным числом")

    log_dir = Path(args.path)
    if not log_dir.exists():
        raise FileNotFoundError(f"Папка с логами не найдена: {args.path}")

    if not log_dir.is_dir():
        raise NotADirectoryError(f"Указанный путь не является папкой: {args.path}")


def create_watcher_config(args: argparse.Namespace) -> WatcherConfig:
    """Создаёт конфигурацию для LogFollower на основе аргументов."""

    return WatcherConfig(
        check_interval=args.interval,
        encoding=args.encoding,
        use_polling=args.polling,
    )


def create_filter_config(args: argparse.Namespace) -> FilterConfig:
    return FilterConfig.from_flags(
        error=args.error,
        warning=args.warning,
        critical=args.critical,
        all_issues=args.all_issues,
    )


def setup_signal_handlers(follower: LogFollower) -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""

    def signal_handler(signum, frame):
        # только флаг: основной поток может быть внутри ожидания события
        follower.request_stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def print_stats(stats: dict) -> None:
    """Выводит статистику в читаемом формате."""

    out = sys.stderr

    print("\n" + "=" * 50, file=out)
    print("СТАТИСТИКА MAGELOGS", file=out)
    print("=" * 50, file=out)

    log_stats = stats.get("log_lines", {})
    print(f"Всего строк: {log_stats.get('total_lines', 0)}", file=out)

    print("По классам:", file=out)
    for match_class, count in log_stats.get('lines_by_class', {}).items():
        if count > 0:
            print(f"  {match_class}: {count}", file=out)

    if log_stats.get('by_source'):
        print("По файлам:", file=out)
        for source, count in log_stats['by_source'].items():
            print(f"  {source}: {count}", file=out)

    discontinuities = stats.get("discontinuities", {})
    if discontinuities.get("total"):
        print(f"\nУсечений файлов: {discontinuities['total']}", file=out)

    if "duration_seconds" in stats:
        print(f"\nОбщее время работы: {stats['duration_seconds']:.2f} секунд", file=out)

    print("=" * 50, file=out)


def run_follow(args: argparse.Namespace) -> int:
    """
    Основная функция запуска мониторинга.

    Возвращает:
        Код завершения (0 - успех, 1 - ошибка)
    """
    stats_collector = None

    try:
        filter_config = create_filter_config(args)
        if filter_config.is_empty:
            logger.warning("Не выбран ни один уровень (-a, -e, -w, -c): выводить будет нечего")

        use_colors = not args.no_colors and ColorFormatter.supports_color(sys.stdout)

        follower = LogFollower(
            path=args.path,
            filter_config=filter_config,
            handlers=[ConsoleHandler(use_colors=use_colors)],
            config=create_watcher_config(args),
        )

        if args.stats:
            stats_collector = StatsCollector()
            follower.add_handler(stats_collector)

        setup_signal_handlers(follower)

        follower.start()

        logger.info("Мониторинг завершён")
        return 0

    except KeyboardInterrupt:
        logger.info("Мониторинг прерван пользователем")
        return 0
    except TrackedFileError as e:
        logger.error(f"Ошибка файла: {e}")
        return 1
    except NotifierError as e:
        logger.error(f"Ошибка наблюдения: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Ошибка конфигурации: {e}")
        return 1
    except Exception as e:
        logger.error(f"Неожиданная ошибка: {e}", exc_info=True)
        return 1
    finally:
        if stats_collector is not None:
            print_stats(stats_collector.get_stats())


def main(args: Optional[List[str]] = None) -> int:
    parser = setup_arg_parser()
    parsed_args = parser.parse_args(args)

    setup_basic_logger(parsed_args.log_level)

    try:
        validate_args(parsed_args)
    except (OSError, ValueError) as e:
        logger.error(f"Ошибка при запуске: {e}")
        return 1

    return run_follow(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
