"""
=============================================================================
TIMEZONES.PY - Fechas en la zona horaria del usuario
=============================================================================
"Hoy" y "ayer" dependen de DÓNDE está el usuario.

Ejemplo:
  Son las 16:00 UTC del lunes. En Nueva York es lunes (12:00),
  pero en Tokio ya es martes (01:00).
  Si comparamos fechas en UTC (o en la hora del servidor), un usuario
  de Tokio que completa su MIT a la 01:00 lo vería apuntado en lunes
  y podría perder la racha.

Regla: TODA comparación de días pasa por local_date() con el nombre IANA
de la zona horaria ("Europe/Madrid", "America/New_York"...).

En la BD guardamos los instantes en UTC sin tzinfo (datetime.utcnow()).
"""

from datetime import date, datetime, time, timedelta
from typing import Optional

import pytz

DAY_CODES = ["MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN"]
# DAY_CODES[date.weekday()] → código del día (lunes = 0)


def get_timezone(tz_name: Optional[str]):
    """Devuelve el objeto pytz de la zona. Si no existe, lanza UnknownTimeZoneError."""
    return pytz.timezone(tz_name or "UTC")


def is_valid_timezone(tz_name: str) -> bool:
    try:
        pytz.timezone(tz_name)
        return True
    except pytz.UnknownTimeZoneError:
        return False


def to_utc(moment: datetime) -> datetime:
    """Convierte un datetime a UTC aware. Los naive se consideran UTC."""
    if moment.tzinfo is None:
        return pytz.utc.localize(moment)
    return moment.astimezone(pytz.utc)


def to_naive_utc(moment: datetime) -> datetime:
    """Formato de almacenamiento: UTC sin tzinfo"""
    return to_utc(moment).replace(tzinfo=None)


def local_date(moment: datetime, tz_name: Optional[str]) -> date:
    """
    Normaliza un instante al día de calendario en la zona del usuario.
    Es la ÚNICA función que decide a qué día pertenece un instante.
    """
    return to_utc(moment).astimezone(get_timezone(tz_name)).date()


def local_now(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Hora actual (aware) en la zona del usuario"""
    return to_utc(now or datetime.utcnow()).astimezone(get_timezone(tz_name))


def user_today(tz_name: Optional[str], now: Optional[datetime] = None) -> date:
    return local_date(now or datetime.utcnow(), tz_name)


def days_between(earlier: date, later: date) -> int:
    """Días enteros de earlier a later (negativo si later es anterior)"""
    return (later - earlier).days


def date_range(start: date, end: date) -> list[date]:
    """Todas las fechas de start a end, ambas incluidas"""
    return [start + timedelta(days=i) for i in range(days_between(start, end) + 1)]


def week_start(day: date) -> date:
    """Lunes de la semana a la que pertenece day"""
    return day - timedelta(days=day.weekday())


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_end(day: date) -> date:
    if day.month == 12:
        return date(day.year, 12, 31)
    return date(day.year, day.month + 1, 1) - timedelta(days=1)


def shift_months(day: date, months: int) -> date:
    """Primer día del mes desplazado `months` meses (negativo = atrás)"""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def day_code(day: date) -> str:
    return DAY_CODES[day.weekday()]


def local_day_bounds(first_day: date, last_day: date, tz_name: Optional[str]) -> tuple[datetime, datetime]:
    """
    Instantes UTC (naive) que cubren de first_day a last_day en la zona del
    usuario: [inicio de first_day, inicio del día siguiente a last_day).
    Sirve para filtrar columnas como completed_at por "días locales".
    """
    tz = get_timezone(tz_name)
    start = tz.localize(datetime.combine(first_day, time.min))
    end = tz.localize(datetime.combine(last_day + timedelta(days=1), time.min))
    return to_naive_utc(start), to_naive_utc(end)
