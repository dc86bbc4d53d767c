from typing import Dict, Optional, Tuple

from .models import FilterConfig, MatchClass, Severity

ERROR_MARKERS: Tuple[str, ...] = ("main.ERROR", "main.CRITICAL")
WARNING_MARKERS: Tuple[str, ...] = ("main.WARNING",)

# какие флаги открывают класс совпадения
CLASS_SEVERITIES: Dict[MatchClass, Tuple[Severity, ...]] = {
    MatchClass.ERROR: (Severity.ERROR, Severity.CRITICAL),
    MatchClass.WARNING: (Severity.WARNING,),
}


def classify_line(line: str) -> Optional[MatchClass]:
    """
    Определяет класс строки по маркерам, без учёта флагов.

    main.ERROR и main.CRITICAL дают один и тот же класс ERROR.
    Маркеры ERROR проверяются первыми, поэтому класс всегда один.
    """
    if any(marker in line for marker in ERROR_MARKERS):
        return MatchClass.ERROR
    if any(marker in line for marker in WARNING_MARKERS):
        return MatchClass.WARNING
    return None


def match_line(line: str, config: FilterConfig) -> Optional[MatchClass]:
    """
    Возвращает класс строки, если её нужно показать, иначе None.

    Args:
        line (str): Строка лога;
        config (FilterConfig): Включённые уровни и режим --all.

    Returns:
        MatchClass | None: Не больше одного класса на строку.
    """
    match_class = classify_line(line)
    if match_class is None:
        return None

    if config.all_mode:
        return match_class

    if any(config.is_enabled(severity) for severity in CLASS_SEVERITIES[match_class]):
        return match_class

    return None
