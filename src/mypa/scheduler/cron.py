"""Cron-Evaluator: Nächster Ausführungszeitpunkt aus einem Cron-Ausdruck.

Reine Funktionen ohne I/O. Gleiche Eingaben ``(expression, now)``
liefern immer dasselbe Ergebnis.

Der Evaluator läuft Minute für Minute vorwärts und prüft alle fünf
Felder (minute hour day month day_of_week). Die Suche ist durch
``max_iterations`` begrenzt.

Unterstützte Feld-Syntax:
    *            jeder Wert
    N            genau N
    N-M          N bis M (inklusive)
    */S          jeder Wert mit v % S == 0
    N-M/S, N/S   ab N (bis M) in Schritten von S
    A,B,...      beliebige Kombination der obigen

Day-of-Month und Day-of-Week werden UND-verknüpft (nicht ODER wie bei
Vixie-Cron): ``0 9 13 * 5`` feuert nur an einem Freitag, dem 13.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import NamedTuple

from mypa.core.errors import CronEvaluationExhausted, CronParseError

MAX_SEARCH_MINUTES = 7 * 24 * 60  # eine Woche
INVALID_EXPRESSION_FALLBACK = timedelta(hours=1)
EXHAUSTED_SEARCH_FALLBACK = timedelta(hours=24)

_ONE_MINUTE = timedelta(minutes=1)


class CronFields(NamedTuple):
    """Die fünf Felder eines Cron-Ausdrucks als Rohtext."""

    minute: str
    hour: str
    day: str
    month: str
    day_of_week: str


def parse_cron_fields(expression: str) -> CronFields:
    """Zerlegt einen Cron-Ausdruck in seine fünf Felder.

    Felder nach dem fünften werden ignoriert (6-Feld-Ausdrücke mit
    Jahres- oder Sekundenfeld werden nur auf die ersten fünf geprüft).

    Raises:
        CronParseError: Bei weniger als 5 Feldern.
    """
    parts = expression.strip().split()
    if len(parts) < 5:
        msg = f"Cron-Ausdruck braucht 5 Felder, hat {len(parts)}: '{expression}'"
        raise CronParseError(msg, details={"expression": expression})
    return CronFields(*parts[:5])


def validate_cron_expression(expression: str) -> CronFields:
    """Prüft einen Ausdruck vor dem Speichern (Job-Management-API)."""
    return parse_cron_fields(expression)


def is_valid_cron_expression(expression: str) -> bool:
    try:
        parse_cron_fields(expression)
    except CronParseError:
        return False
    return True


# ============================================================================
# Feld-Matching
# ============================================================================


def _parse_range(text: str) -> tuple[int, int]:
    start_text, end_text = text.split("-")[:2]
    return int(start_text), int(end_text)


def _alternative_matches(alternative: str, value: int) -> bool:
    """Prüft eine einzelne Alternative. Nicht parsebar = kein Treffer."""
    try:
        if "/" in alternative:
            range_text, step_text = alternative.split("/")[:2]
            step = int(step_text)
            if step <= 0:
                return False
            if range_text == "*":
                return value % step == 0
            if "-" in range_text:
                start, end = _parse_range(range_text)
                return start <= value <= end and (value - start) % step == 0
            start = int(range_text)
            return value >= start and (value - start) % step == 0

        if "-" in alternative:
            start, end = _parse_range(alternative)
            return start <= value <= end

        return int(alternative) == value
    except ValueError:
        return False


def field_matches(field: str, value: int) -> bool:
    """Prüft ob ``value`` auf das Cron-Feld ``field`` passt."""
    if field == "*":
        return True
    return any(_alternative_matches(alt, value) for alt in field.split(","))


def cron_matches(fields: CronFields, moment: datetime) -> bool:
    """Prüft ob ``moment`` (Wanduhrzeit) alle fünf Felder erfüllt.

    Day-of-Week: 0 = Sonntag ... 6 = Samstag.
    """
    day_of_week = (moment.weekday() + 1) % 7
    return (
        field_matches(fields.minute, moment.minute)
        and field_matches(fields.hour, moment.hour)
        and field_matches(fields.day, moment.day)
        and field_matches(fields.month, moment.month)
        and field_matches(fields.day_of_week, day_of_week)
    )


# ============================================================================
# Suche
# ============================================================================


def find_next_match(
    expression: str,
    now: datetime,
    *,
    max_iterations: int = MAX_SEARCH_MINUTES,
) -> datetime:
    """Strikte Variante von :func:`compute_next_run` ohne Fallbacks.

    Bei zeitzonenbehaftetem ``now`` läuft die Suche in UTC, geprüft wird
    die Wanduhrzeit in ``now``'s Zeitzone. Das Ergebnis trägt dieselbe
    Zeitzone wie ``now``.

    Raises:
        CronParseError: Bei weniger als 5 Feldern.
        CronEvaluationExhausted: Kein Treffer innerhalb von ``max_iterations`` Minuten.
    """
    fields = parse_cron_fields(expression)
    tz = now.tzinfo

    if tz is None:
        candidate = now.replace(second=0, microsecond=0) + _ONE_MINUTE
    else:
        candidate = now.astimezone(UTC).replace(second=0, microsecond=0) + _ONE_MINUTE

    for _ in range(max_iterations):
        local = candidate if tz is None else candidate.astimezone(tz)
        if cron_matches(fields, local):
            return local
        candidate += _ONE_MINUTE

    msg = f"Kein Treffer für '{expression}' innerhalb von {max_iterations} Minuten"
    raise CronEvaluationExhausted(
        msg, details={"expression": expression, "max_iterations": max_iterations},
    )


def _elapsed(now: datetime, delta: timedelta) -> datetime:
    """``now + delta`` als verstrichene Zeit, auch über eine Zeitumstellung."""
    if now.tzinfo is None:
        return now + delta
    return (now.astimezone(UTC) + delta).astimezone(now.tzinfo)


def compute_next_run(
    expression: str,
    now: datetime | None = None,
    *,
    max_iterations: int = MAX_SEARCH_MINUTES,
) -> datetime:
    """Berechnet den nächsten Ausführungszeitpunkt strikt nach ``now``.

    Wirft nie: ungültige Ausdrücke liefern ``now + 1h``, eine erfolglose
    Suche liefert ``now + 24h``. Beides in echten Stunden, nicht auf der
    Wanduhr. So kommt jeder Job garantiert vorwärts.

    Args:
        expression: Cron-Ausdruck (z.B. "0 9 * * 1-5").
        now: Referenzzeit. ``None`` = aktuelle UTC-Zeit.
        max_iterations: Obergrenze der Minuten-Schritte.

    Returns:
        Minutengenauer Zeitpunkt > ``now`` (Fallbacks ausgenommen).
    """
    if now is None:
        now = datetime.now(UTC)
    try:
        return find_next_match(expression, now, max_iterations=max_iterations)
    except CronParseError:
        return _elapsed(now, INVALID_EXPRESSION_FALLBACK)
    except CronEvaluationExhausted:
        return _elapsed(now, EXHAUSTED_SEARCH_FALLBACK)
