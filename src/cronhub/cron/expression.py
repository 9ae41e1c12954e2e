"""Cron-Auswertung: Parst fünfteilige Ausdrücke und berechnet den nächsten Lauf.

Unterstützt pro Feld: ``*``, ``*/N`` (alle N Einheiten ab der ersten Einheit
des Feldes) und eine einzelne Zahl. Monat und Wochentag akzeptieren zusätzlich
dreibuchstabige Namen (``JAN``, ``MON``). Andere Tokens in Tag, Monat und
Wochentag (Bereiche, Listen) werden als opak akzeptiert und schränken nicht ein.

Alle Ergebnisse haben Minutenauflösung und liegen strikt nach dem
Bezugszeitpunkt.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cronhub.core.errors import InvalidScheduleError

FIELD_NAMES = ("minute", "hour", "day", "month", "day_of_week")

# (niedrigster, höchster) Wert pro Feld; Wochentag 7 ist wie 0 der Sonntag
_BOUNDS = {
    "minute": (0, 59),
    "hour": (0, 23),
    "day": (1, 31),
    "month": (1, 12),
    "day_of_week": (0, 7),
}

_MONTH_NAMES = {
    name: i + 1
    for i, name in enumerate(
        ["JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]
    )
}
_WEEKDAY_NAMES = {name: i for i, name in enumerate(["SUN", "MON", "TUE", "WED", "THU", "FRI", "SAT"])}

_OPAQUE_TOKEN = re.compile(r"^[A-Za-z0-9*/,\-]+$")

# Obergrenze der Tagessuche (deckt den 29. Februar in Schaltjahren ab)
_MAX_SEARCH_DAYS = 366 * 8

_PRESET_DESCRIPTIONS = {
    "* * * * *": "Every minute",
    "*/5 * * * *": "Every 5 minutes",
    "*/15 * * * *": "Every 15 minutes",
    "*/30 * * * *": "Every 30 minutes",
    "0 * * * *": "Every hour",
    "0 */6 * * *": "Every 6 hours",
    "0 0 * * *": "Daily at midnight",
    "0 2 * * *": "Daily at 2 AM",
    "0 0 * * MON": "Weekly (Monday)",
}


def split_fields(expression: str) -> dict[str, str]:
    """Zerlegt einen Cron-Ausdruck in seine fünf benannten Felder.

    Raises:
        InvalidScheduleError: Wenn der Ausdruck nicht genau 5 Felder hat.
    """
    parts = (expression or "").strip().split()
    if len(parts) != 5:
        raise InvalidScheduleError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'",
            details={"expression": expression},
        )
    return dict(zip(FIELD_NAMES, parts))


@dataclass(frozen=True)
class CronField:
    """Ein geparstes Feld. ``values`` ist None, wenn das Feld nicht einschränkt."""

    name: str
    raw: str
    values: frozenset[int] | None

    @property
    def is_wildcard(self) -> bool:
        return self.values is None

    def matches(self, value: int) -> bool:
        return self.values is None or value in self.values


def _parse_number(name: str, token: str, expression: str) -> int:
    upper = token.upper()
    if name == "month" and upper in _MONTH_NAMES:
        return _MONTH_NAMES[upper]
    if name == "day_of_week" and upper in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES[upper]
    if not token.isdigit():
        raise InvalidScheduleError(
            f"Invalid {name} value '{token}' in '{expression}'",
            details={"expression": expression, "field": name},
        )
    value = int(token)
    low, high = _BOUNDS[name]
    if not low <= value <= high:
        raise InvalidScheduleError(
            f"{name} value {value} out of range {low}-{high} in '{expression}'",
            details={"expression": expression, "field": name},
        )
    return value


def _parse_field(name: str, raw: str, expression: str) -> CronField:
    low, high = _BOUNDS[name]

    if raw == "*":
        return CronField(name, raw, None)

    if raw.startswith("*/"):
        step_text = raw[2:]
        if not step_text.isdigit() or int(step_text) < 1:
            raise InvalidScheduleError(
                f"Invalid step '{raw}' for {name} in '{expression}'",
                details={"expression": expression, "field": name},
            )
        step = int(step_text)
        if name == "day_of_week":
            high = 6
        return CronField(name, raw, frozenset(range(low, high + 1, step)))

    if name in ("minute", "hour"):
        return CronField(name, raw, frozenset({_parse_number(name, raw, expression)}))

    # Tagesfelder: Zahlen und Namen schränken ein, alles andere ist opak
    if raw.isdigit() or raw.upper() in _MONTH_NAMES or raw.upper() in _WEEKDAY_NAMES:
        value = _parse_number(name, raw, expression)
        if name == "day_of_week" and value == 7:
            value = 0
        return CronField(name, raw, frozenset({value}))

    if not _OPAQUE_TOKEN.match(raw):
        raise InvalidScheduleError(
            f"Invalid {name} field '{raw}' in '{expression}'",
            details={"expression": expression, "field": name},
        )
    return CronField(name, raw, None)


@dataclass(frozen=True)
class CronSchedule:
    """Ein geparster fünfteiliger Cron-Ausdruck."""

    expression: str
    minute: CronField
    hour: CronField
    day: CronField
    month: CronField
    day_of_week: CronField

    def _day_matches(self, candidate: datetime) -> bool:
        if not self.month.matches(candidate.month):
            return False
        weekday = (candidate.weekday() + 1) % 7  # cron: Sonntag = 0
        if not self.day.is_wildcard and not self.day_of_week.is_wildcard:
            # Klassisches cron: eingeschränkter Monatstag und Wochentag werden ODER-verknüpft
            return self.day.matches(candidate.day) or self.day_of_week.matches(weekday)
        return self.day.matches(candidate.day) and self.day_of_week.matches(weekday)

    def next_after(self, reference: datetime) -> datetime:
        """Erster passender Zeitpunkt strikt nach ``reference``."""
        minutes = sorted(self.minute.values) if self.minute.values is not None else list(range(60))
        hours = sorted(self.hour.values) if self.hour.values is not None else list(range(24))

        candidate = reference.replace(second=0, microsecond=0) + timedelta(minutes=1)

        for _ in range(_MAX_SEARCH_DAYS):
            if self._day_matches(candidate):
                for hour in hours:
                    if hour < candidate.hour:
                        continue
                    first_minute = candidate.minute if hour == candidate.hour else 0
                    for minute in minutes:
                        if minute >= first_minute:
                            return candidate.replace(hour=hour, minute=minute)
            candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)

        raise InvalidScheduleError(
            f"Cron expression never fires: '{self.expression}'",
            details={"expression": self.expression},
        )


def parse_cron(expression: str) -> CronSchedule:
    """Parst und validiert einen Cron-Ausdruck.

    Raises:
        InvalidScheduleError: Bei falscher Feldanzahl, nicht-numerischen oder
            ungültigen Minuten-/Stundenwerten, ungültigen Schritten oder Zeichen.
    """
    fields = split_fields(expression)
    parsed = {name: _parse_field(name, raw, expression) for name, raw in fields.items()}
    return CronSchedule(expression=" ".join(fields.values()), **parsed)


def next_run(expression: str, from_time: datetime) -> datetime:
    """Berechnet den nächsten Lauf von ``expression`` strikt nach ``from_time``.

    Rein und deterministisch; Sekunden und Mikrosekunden des Ergebnisses sind
    genullt, die tzinfo von ``from_time`` bleibt erhalten.
    """
    return parse_cron(expression).next_after(from_time)


def validate_schedule(expression: str) -> str:
    """Validiert und gibt den Ausdruck mit normalisierten Leerzeichen zurück.

    Raises:
        InvalidScheduleError: Fehlerhaft, oder der Ausdruck feuert nie
            (z.B. ``0 0 31 2 *``).
    """
    schedule = parse_cron(expression)
    schedule.next_after(datetime.now(UTC))
    return schedule.expression


def describe_schedule(expression: str) -> str:
    """Lesbare Bezeichnung für gängige Presets, sonst der Ausdruck selbst."""
    normalised = " ".join((expression or "").split())
    return _PRESET_DESCRIPTIONS.get(normalised, expression)
