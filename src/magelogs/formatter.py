import os
from typing import ClassVar, Dict, Optional, TextIO

from .models import MatchClass


class ColorFormatter:

    COLORS: ClassVar[Dict[MatchClass, str]] = {
        MatchClass.ERROR: "\033[91m",   # красный
        MatchClass.WARNING: "\033[93m", # жёлтый
    }

    RESET: ClassVar[str] = "\033[0m"

    SEPARATOR: ClassVar[str] = " --> "

    def __init__(self, use_colors=True):
        self.use_colors = use_colors

    def __call__(self, filename: str, line: str, match_class: Optional[MatchClass]) -> str:
        """
        Собирает строку вида "<filename> --> <line>".
        Цветом выделяется только сама строка лога, имя файла - без цвета.
        """
        return f"{filename}{self.SEPARATOR}{self.colorize(line, match_class)}"

    def colorize(self, line: str, match_class: Optional[MatchClass]) -> str:
        if self.use_colors and match_class in self.COLORS:
            return f"{self.COLORS[match_class]}{line}{self.RESET}"
        return line

    @staticmethod
    def supports_color(stream: Optional[TextIO]) -> bool:
        """Цвет включается только для терминала и без переменной NO_COLOR."""
        if os.environ.get("NO_COLOR"):
            return False
        isatty = getattr(stream, "isatty", None)
        try:
            return bool(isatty and isatty())
        except ValueError:
            # поток уже закрыт
            return False
