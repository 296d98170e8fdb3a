"""Features – property matching and rollout hashing for local evaluation.

Every function here is pure: the evaluator decides what properties to pass
and what to do with an :class:`InconclusiveMatchError`.
"""
from __future__ import annotations

import datetime
import hashlib
import re
from typing import Any, Mapping

from hogflags.api.models import ComparisonOperator, PropertyFilter
from hogflags.kernel.errors import InconclusiveMatchError

LONG_SCALE = float(0xFFFFFFFFFFFFFFF)

DISTINCT_ID_PROPERTY = "distinct_id"

_RELATIVE_DATE = re.compile(r"^-?(?P<number>[0-9]+)(?P<interval>[hdwmy])$")
_MAX_RELATIVE_NUMBER = 10_000


def rollout_hash(key: str, distinct_id: str, salt: str = "") -> float:
    """Map ``(key, distinct_id, salt)`` uniformly onto ``[0, 1]``.

    Given the same inputs the result never changes, so ``hash < 0.2``
    selects a stable 20% of ids.
    """
    hash_key = f"{key}.{distinct_id}{salt}"
    hash_val = int(hashlib.sha1(hash_key.encode("utf-8")).hexdigest()[:15], 16)  # noqa: S324
    return hash_val / LONG_SCALE


# ---------------------------------------------------------------------------
# Value comparisons
# ---------------------------------------------------------------------------

def _exact_match(value: Any, override_value: Any) -> bool:
    if isinstance(value, list):
        return _fold(override_value) in [_fold(v) for v in value]
    return _fold(value) == _fold(override_value)


def _fold(value: Any) -> str:
    return str(value).casefold()


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(override_value: Any, value: Any, operator: str) -> bool:
    left = _as_float(override_value)
    right = _as_float(value)
    if left is None or right is None:
        left, right = str(override_value), str(value)  # type: ignore[assignment]
    if operator == ComparisonOperator.GREATER_THAN:
        return left > right  # type: ignore[operator]
    if operator == ComparisonOperator.GREATER_THAN_OR_EQUAL:
        return left >= right  # type: ignore[operator]
    if operator == ComparisonOperator.LESS_THAN:
        return left < right  # type: ignore[operator]
    return left <= right  # type: ignore[operator]


def _regex_search(pattern: Any, override_value: Any) -> bool | None:
    """``None`` when *pattern* does not compile."""
    try:
        compiled = re.compile(str(pattern))
    except re.error:
        return None
    return compiled.search(str(override_value)) is not None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def _subtract_months(moment: datetime.datetime, months: int) -> datetime.datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    next_month = datetime.date(year + (month == 12), month % 12 + 1, 1)
    last_day = (next_month - datetime.timedelta(days=1)).day
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


def relative_date(value: str, now: datetime.datetime) -> datetime.datetime | None:
    """Parse ``-7d`` / ``2h`` / ``1w`` / ``3m`` / ``1y`` as "that long before *now*"."""
    match = _RELATIVE_DATE.match(value.strip())
    if match is None:
        return None
    number = int(match.group("number"))
    if number >= _MAX_RELATIVE_NUMBER:
        return None
    interval = match.group("interval")
    if interval == "h":
        return now - datetime.timedelta(hours=number)
    if interval == "d":
        return now - datetime.timedelta(days=number)
    if interval == "w":
        return now - datetime.timedelta(weeks=number)
    if interval == "m":
        return _subtract_months(now, number)
    return _subtract_months(now, number * 12)


def _to_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, datetime.date):
        parsed = datetime.datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = datetime.datetime.fromisoformat(str(value).strip())
        except ValueError as exc:
            raise InconclusiveMatchError(f"Invalid date: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.UTC)
    return parsed


def _date_before(value: Any, override_value: Any, now: datetime.datetime) -> bool:
    target = relative_date(str(value), now) if isinstance(value, str) else None
    if target is None:
        target = _to_datetime(value)
    return _to_datetime(override_value) < target


# ---------------------------------------------------------------------------
# Property matching
# ---------------------------------------------------------------------------

def match_property(
    prop: PropertyFilter,
    properties: Mapping[str, Any],
    distinct_id: str | None = None,
    now: datetime.datetime | None = None,
) -> bool:
    """Match one person or group property filter.

    Raises :class:`InconclusiveMatchError` when the answer depends on data
    that was not supplied: a missing property, a null filter value, the
    ``is_not_set`` operator, an unknown operator or an unparseable date.
    A property supplied as ``None`` never matches, except for ``is_not``.
    """
    operator = prop.operator or ComparisonOperator.EXACT.value
    if operator == ComparisonOperator.IS_NOT_SET:
        raise InconclusiveMatchError("Can't match properties with operator is_not_set")
    if prop.value is None:
        raise InconclusiveMatchError(f"Property filter '{prop.key}' has no value")

    if prop.key == DISTINCT_ID_PROPERTY and distinct_id is not None:
        override_value = distinct_id
    elif prop.key in properties:
        override_value = properties[prop.key]
    else:
        raise InconclusiveMatchError(f"Can't match property '{prop.key}' without a given value")

    if override_value is None and operator != ComparisonOperator.IS_NOT:
        return False

    value = prop.value
    if operator in (ComparisonOperator.EXACT, ComparisonOperator.IN):
        return _exact_match(value, override_value)
    if operator == ComparisonOperator.IS_NOT:
        return not _exact_match(value, override_value)
    if operator == ComparisonOperator.IS_SET:
        return True
    if operator == ComparisonOperator.CONTAINS_IGNORE_CASE:
        return str(value).casefold() in str(override_value).casefold()
    if operator == ComparisonOperator.DOES_NOT_CONTAIN_IGNORE_CASE:
        return str(value).casefold() not in str(override_value).casefold()
    if operator == ComparisonOperator.REGEX:
        return _regex_search(value, override_value) is True
    if operator == ComparisonOperator.NOT_REGEX:
        return _regex_search(value, override_value) is False
    if operator in (
        ComparisonOperator.GREATER_THAN,
        ComparisonOperator.GREATER_THAN_OR_EQUAL,
        ComparisonOperator.LESS_THAN,
        ComparisonOperator.LESS_THAN_OR_EQUAL,
    ):
        return _compare(override_value, value, operator)
    if operator in (ComparisonOperator.IS_DATE_BEFORE, ComparisonOperator.IS_DATE_AFTER):
        now = now or datetime.datetime.now(datetime.UTC)
        before = _date_before(value, override_value, now)
        return before if operator == ComparisonOperator.IS_DATE_BEFORE else not before

    raise InconclusiveMatchError(f"Unknown operator: {operator}")


def matches_dependency_value(expected: Any, actual: bool | str) -> bool:
    """Does a dependency flag's result satisfy a ``flag_evaluates_to`` filter?

    A variant satisfies ``True`` or its own key; a boolean result must equal
    the expected boolean.
    """
    if isinstance(actual, str):
        if not actual:
            return False
        if isinstance(expected, bool):
            return expected
        if isinstance(expected, str):
            return actual == expected
        return False
    if isinstance(expected, bool):
        return expected == actual
    return False


__all__ = [
    "LONG_SCALE",
    "match_property",
    "matches_dependency_value",
    "relative_date",
    "rollout_hash",
]
