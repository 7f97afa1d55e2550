"""Handicap index calculations based on score differentials.

A differential normalises one round for course difficulty::

    (gross_score - course_rating - pcc) * 113 / slope_rating

The index is the average of the best differentials among the most recent
rounds, where the number of differentials used depends on how many rounds are
available (see ``DIFFERENTIALS_USED_BY_COUNT``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

STANDARD_SLOPE = 113
DEFAULT_WINDOW = 20
MIN_ROUNDS = 3
DEFAULT_PAR = 72

# Plausible ranges for an 18-hole round
MIN_SLOPE, MAX_SLOPE = 55, 155
MIN_COURSE_RATING, MAX_COURSE_RATING = 60, 80

# (lowest pool size, highest pool size, differentials used)
DIFFERENTIALS_USED_BY_COUNT: Tuple[Tuple[int, int, int], ...] = (
    (3, 5, 1),
    (6, 8, 2),
    (9, 11, 3),
    (12, 14, 4),
    (15, 16, 5),
    (17, 18, 6),
    (19, 19, 7),
)
_FULL_WINDOW_COUNT = 8

_ONE_DECIMAL = Decimal("0.1")
_WHOLE = Decimal("1")


class HandicapError(Exception):
    """Base class for handicap calculation errors."""


class InvalidInputError(HandicapError, ValueError):
    """A round does not satisfy the inputs required for a differential."""

    def __init__(self, message: str, round_id: Any = None):
        super().__init__(message)
        self.round_id = round_id


@dataclass(frozen=True)
class RoundRecord:
    round_id: Any
    date_played: date
    gross_score: int
    course_rating: float
    slope_rating: int
    par: Optional[int] = None
    completed: bool = True
    bag_id: Any = None
    pcc: float = 0.0

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RoundRecord":
        """Build a record from a datastore row.

        Accepts ISO date strings or ``date``/``datetime`` values for
        ``date_played``. Numeric columns are passed through unchanged so that
        :func:`compute_differential` can report bad values.
        """
        played = row.get("date_played")
        if isinstance(played, datetime):
            played = played.date()
        elif isinstance(played, str):
            played = date.fromisoformat(played[:10])
        return cls(
            round_id=row.get("round_id"),
            date_played=played,
            gross_score=row.get("gross_score"),
            course_rating=row.get("course_rating"),
            slope_rating=row.get("slope_rating"),
            par=row.get("par"),
            completed=bool(row.get("completed")),
            bag_id=row.get("bag_id"),
            pcc=row.get("pcc") or 0.0,
        )


@dataclass(frozen=True)
class Differential:
    round_id: Any
    date_played: date
    value: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "date_played": self.date_played.isoformat() if self.date_played else None,
            "differential": self.value,
        }


@dataclass(frozen=True)
class HandicapIndex:
    value: float
    basis_round_count: int
    pool_size: int
    differentials_used: Tuple[Differential, ...] = ()
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)
    skipped_round_ids: Tuple[Any, ...] = ()

    available = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": True,
            "handicap_index": self.value,
            "rounds_used": self.basis_round_count,
            "total_rounds": self.pool_size,
            "differentials_used": [d.to_dict() for d in self.differentials_used],
            "computed_at": self.computed_at.isoformat(),
            "skipped_round_ids": list(self.skipped_round_ids),
        }


@dataclass(frozen=True)
class InsufficientDataResult:
    """No index can be computed because too few eligible rounds exist."""

    pool_size: int
    required: int = MIN_ROUNDS
    skipped_round_ids: Tuple[Any, ...] = ()

    available = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "available": False,
            "handicap_index": None,
            "total_rounds": self.pool_size,
            "required_rounds": self.required,
            "skipped_round_ids": list(self.skipped_round_ids),
        }


HandicapResult = Union[HandicapIndex, InsufficientDataResult]


def _to_decimal(value: Any, name: str, round_id: Any = None) -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidInputError(f"{name} is required", round_id=round_id)
    try:
        # via str() so 72.1 stays 72.1
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"{name} must be numeric, got {value!r}", round_id=round_id)
    if not result.is_finite():
        raise InvalidInputError(f"{name} must be finite, got {value!r}", round_id=round_id)
    return result


def _round_one_decimal(value: Decimal) -> float:
    return float(value.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def differentials_to_use(pool_size: int) -> int:
    """Return how many of the best differentials count for ``pool_size``."""
    if pool_size < MIN_ROUNDS:
        return 0
    for low, high, used in DIFFERENTIALS_USED_BY_COUNT:
        if low <= pool_size <= high:
            return used
    return _FULL_WINDOW_COUNT


def compute_differential(round_: RoundRecord) -> Differential:
    """Return the score differential for a single round.

    Raises:
        InvalidInputError: gross score is not a positive integer, or the
            course or slope rating is missing or not positive.
    """
    rid = round_.round_id
    gross = round_.gross_score
    if isinstance(gross, bool) or not isinstance(gross, int):
        raise InvalidInputError(f"gross_score must be an integer, got {gross!r}", round_id=rid)
    if gross < 1:
        raise InvalidInputError(f"gross_score must be at least 1, got {gross}", round_id=rid)
    rating = _to_decimal(round_.course_rating, "course_rating", rid)
    if rating <= 0:
        raise InvalidInputError(f"course_rating must be positive, got {round_.course_rating}", round_id=rid)
    slope = _to_decimal(round_.slope_rating, "slope_rating", rid)
    if slope <= 0:
        raise InvalidInputError(f"slope_rating must be positive, got {round_.slope_rating}", round_id=rid)
    pcc = _to_decimal(round_.pcc or 0, "pcc", rid)

    raw = (Decimal(gross) - rating - pcc) * STANDARD_SLOPE / slope
    return Differential(round_id=rid, date_played=round_.date_played, value=_round_one_decimal(raw))


def select_best_differentials(
    differentials: Sequence[Differential],
    window: int = DEFAULT_WINDOW,
) -> List[Differential]:
    """Pick the differentials that count towards the index.

    ``differentials`` must be ordered most recent first; only the first
    ``window`` entries are considered. Returns an empty list when fewer than
    three are available. Equal values keep their recency order.
    """
    pool = list(differentials)[:window]
    used = differentials_to_use(len(pool))
    if not used:
        return []
    return sorted(pool, key=lambda d: d.value)[:used]


def compute_index(
    selected: Sequence[Differential],
    pool_size: Optional[int] = None,
    computed_at: Optional[datetime] = None,
) -> HandicapResult:
    """Average the selected differentials into a handicap index."""
    chosen = tuple(selected)
    size = len(chosen) if pool_size is None else pool_size
    if not chosen:
        return InsufficientDataResult(pool_size=size)
    total = sum((Decimal(str(d.value)) for d in chosen), Decimal(0))
    value = _round_one_decimal(total / len(chosen))
    return HandicapIndex(
        value=value,
        basis_round_count=len(chosen),
        pool_size=size,
        differentials_used=chosen,
        computed_at=computed_at or datetime.now(timezone.utc),
    )


def _sorted_differentials(
    rounds: Iterable[RoundRecord],
    on_invalid: str,
) -> Tuple[List[Differential], List[Any]]:
    if on_invalid not in ("raise", "skip"):
        raise ValueError(f"on_invalid must be 'raise' or 'skip', got {on_invalid!r}")
    diffs: List[Differential] = []
    skipped: List[Any] = []
    for rnd in rounds:
        # Rounds still being played never count
        if not rnd.completed:
            continue
        try:
            diffs.append(compute_differential(rnd))
        except InvalidInputError:
            if on_invalid == "raise":
                raise
            skipped.append(rnd.round_id)
    diffs.sort(key=lambda d: d.date_played, reverse=True)
    return diffs, skipped


def recompute(
    all_rounds: Iterable[RoundRecord],
    window: int = DEFAULT_WINDOW,
    computed_at: Optional[datetime] = None,
    on_invalid: str = "raise",
) -> HandicapResult:
    """Compute a golfer's handicap index from their round history.

    Args:
        all_rounds: Rounds in any order; incomplete rounds are ignored.
        window: Number of most recent rounds considered.
        computed_at: Timestamp recorded on the result (defaults to now).
        on_invalid: ``"raise"`` to propagate the first
            :class:`InvalidInputError`, ``"skip"`` to leave invalid rounds out
            and list them in ``skipped_round_ids``.

    Returns:
        :class:`HandicapIndex`, or :class:`InsufficientDataResult` when fewer
        than three eligible rounds fall in the window.
    """
    diffs, skipped = _sorted_differentials(all_rounds, on_invalid)
    recent = diffs[:window]
    result = compute_index(
        select_best_differentials(recent, window=window),
        pool_size=len(recent),
        computed_at=computed_at,
    )
    if skipped:
        result = replace(result, skipped_round_ids=tuple(skipped))
    return result


@dataclass(frozen=True)
class DifferentialHistory:
    differentials: Tuple[Differential, ...]
    skipped_round_ids: Tuple[Any, ...] = ()


def differential_history(
    all_rounds: Iterable[RoundRecord],
    limit: int = 50,
    on_invalid: str = "raise",
) -> DifferentialHistory:
    """Return completed rounds' differentials, most recent first.

    ``on_invalid`` behaves as in :func:`recompute`. Skipped rounds are listed
    whether or not they would have fallen within ``limit``.
    """
    diffs, skipped = _sorted_differentials(all_rounds, on_invalid)
    return DifferentialHistory(differentials=tuple(diffs[:limit]), skipped_round_ids=tuple(skipped))


def is_round_eligible(round_: RoundRecord, par: int = DEFAULT_PAR) -> bool:
    """Check that a round's score and ratings are plausible for an 18-hole card.

    The round's own par is used when it has one. Scores must fall within
    par-10..par+50, slope within 55..155 and course rating within 60..80.
    """
    if round_.par is not None:
        par = round_.par
    try:
        score = _to_decimal(round_.gross_score, "gross_score")
        rating = _to_decimal(round_.course_rating, "course_rating")
        slope = _to_decimal(round_.slope_rating, "slope_rating")
        par_value = _to_decimal(par, "par")
    except InvalidInputError:
        return False
    if not (par_value - 10 <= score <= par_value + 50):
        return False
    if not (MIN_SLOPE <= slope <= MAX_SLOPE):
        return False
    return MIN_COURSE_RATING <= rating <= MAX_COURSE_RATING


def _index_value(index: Union[HandicapResult, float, int, None]) -> Optional[Decimal]:
    if index is None or isinstance(index, InsufficientDataResult):
        return None
    if isinstance(index, HandicapIndex):
        return Decimal(str(index.value))
    return _to_decimal(index, "handicap_index")


def course_handicap(
    index: Union[HandicapResult, float, int, None],
    course_rating: Any,
    slope_rating: Any,
    par: int = DEFAULT_PAR,
) -> Optional[int]:
    """Return the whole-stroke course handicap, or None without an index."""
    rating = _to_decimal(course_rating, "course_rating")
    slope = _to_decimal(slope_rating, "slope_rating")
    if rating <= 0:
        raise InvalidInputError(f"course_rating must be positive, got {course_rating}")
    if slope <= 0:
        raise InvalidInputError(f"slope_rating must be positive, got {slope_rating}")
    hcp = _index_value(index)
    if hcp is None:
        return None
    raw = hcp * slope / STANDARD_SLOPE + (rating - _to_decimal(par, "par"))
    return int(raw.quantize(_WHOLE, rounding=ROUND_HALF_UP))


def expected_score(
    index: Union[HandicapResult, float, int, None],
    course_rating: Any,
    slope_rating: Any,
    par: int = DEFAULT_PAR,
) -> Optional[int]:
    """Return the score a golfer of ``index`` is expected to shoot."""
    ch = course_handicap(index, course_rating, slope_rating, par)
    if ch is None:
        return None
    return int(par) + ch


__all__ = [
    "DEFAULT_WINDOW",
    "Differential",
    "DifferentialHistory",
    "HandicapError",
    "HandicapIndex",
    "HandicapResult",
    "InsufficientDataResult",
    "InvalidInputError",
    "MIN_ROUNDS",
    "RoundRecord",
    "compute_differential",
    "compute_index",
    "course_handicap",
    "differential_history",
    "differentials_to_use",
    "expected_score",
    "is_round_eligible",
    "recompute",
    "select_best_differentials",
]
