"""
Portuguese national holiday calendar.

Ten fixed-date holidays plus three Easter-relative ones (Good Friday,
Easter Sunday, Corpus Christi). Holidays are a hard closure: no date
exception can reopen them.
"""

import logging
from datetime import date, timedelta
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

FIXED_HOLIDAYS: dict[tuple[int, int], str] = {
    (1, 1): "Ano Novo",
    (4, 25): "Dia da Liberdade",
    (5, 1): "Dia do Trabalhador",
    (6, 10): "Dia de Portugal",
    (8, 15): "Assunção de Nossa Senhora",
    (10, 5): "Implantação da República",
    (11, 1): "Dia de Todos os Santos",
    (12, 1): "Restauração da Independência",
    (12, 8): "Imaculada Conceição",
    (12, 25): "Natal",
}

# Offsets in days from Easter Sunday
EASTER_RELATIVE_HOLIDAYS: dict[int, str] = {
    -2: "Sexta-feira Santa",
    0: "Páscoa",
    60: "Corpo de Deus",
}


def easter_sunday(year: int) -> date:
    """Easter Sunday for a Gregorian year (Anonymous Gregorian algorithm)."""
    a = year % 19
    b, c = divmod(year, 100)
    d, e = divmod(b, 4)
    f = (b + 8) // 25
    g = (b - f + 1) // 3
    h = (19 * a + b - d - g + 15) % 30
    i, k = divmod(c, 4)
    l = (32 + 2 * e + 2 * i - h - k) % 7  # noqa: E741
    m = (a + 11 * h + 22 * l) // 451
    month, day = divmod(h + l - 7 * m + 114, 31)
    return date(year, month, day + 1)


@lru_cache(maxsize=32)
def holidays_for_year(year: int) -> dict[date, str]:
    """All national holidays of a year, keyed by date."""
    result = {date(year, month, day): name for (month, day), name in FIXED_HOLIDAYS.items()}
    easter = easter_sunday(year)
    for offset, name in EASTER_RELATIVE_HOLIDAYS.items():
        result[easter + timedelta(days=offset)] = name
    logger.debug("Computed %d holidays for %d", len(result), year)
    return result


def is_holiday(day: date) -> bool:
    return day in holidays_for_year(day.year)


def holiday_name(day: date) -> Optional[str]:
    """Portuguese name of the holiday falling on ``day``, or None."""
    return holidays_for_year(day.year).get(day)
