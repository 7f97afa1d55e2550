from flask import Blueprint, abort, current_app, request
import os

from .handicap import (
    DEFAULT_PAR,
    DEFAULT_WINDOW,
    InvalidInputError,
    RoundRecord,
    differential_history,
    expected_score,
    is_round_eligible,
    recompute,
)
from .display import (
    can_calculate_handicap,
    differential_color,
    format_differential,
    format_handicap,
    handicap_color,
    trend,
)
from .datastore import (
    fetch_rounds as ds_fetch_rounds,
    get_current_handicap as ds_get_current_handicap,
    list_bags as ds_list_bags,
    save_handicap as ds_save_handicap,
)


bp = Blueprint('main', __name__)


def _window() -> int:
    return int(current_app.config.get('HANDICAP_WINDOW', DEFAULT_WINDOW))


def _invalid_policy() -> str:
    return current_app.config.get('HANDICAP_INVALID_ROUNDS', 'skip')


def _bag_arg() -> str | None:
    return (request.args.get('bag_id') or '').strip() or None


def _float_arg(name: str, required: bool = True) -> float | None:
    raw = (request.args.get(name) or '').strip()
    if not raw:
        if required:
            abort(400, description=f"Missing required parameter '{name}'.")
        return None
    try:
        return float(raw)
    except ValueError:
        abort(400, description=f"Invalid {name} '{raw}'. Expected a number.")


def _int_arg(name: str, default: int, minimum: int = 1) -> int:
    raw = (request.args.get(name) or '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        abort(400, description=f"Invalid {name} '{raw}'. Expected an integer.")
    if value < minimum:
        abort(400, description=f"Invalid {name} '{raw}'. Must be at least {minimum}.")
    return value


def _load_rounds(profile_id: str, bag_id: str | None = None) -> list[RoundRecord]:
    return [RoundRecord.from_row(r) for r in ds_fetch_rounds(profile_id, bag_id=bag_id)]


def _log_skipped(profile_id: str, bag_id: str | None, round_ids) -> None:
    for rid in round_ids:
        current_app.logger.warning(
            "handicap_round_skipped profile=%s bag=%s round=%s", profile_id, bag_id, rid
        )


def recalculate_handicap(profile_id: str, bag_id: str | None = None):
    """Recompute and store a golfer's handicap, overall or for one bag.

    Rounds are fetched from the round store and handed to the handicap
    engine. The resulting index (or NULL when fewer than three eligible rounds
    exist) is written back to the profile or bag. Invalid rounds are skipped
    or raised according to ``HANDICAP_INVALID_ROUNDS``.
    """
    rounds = _load_rounds(profile_id, bag_id)
    result = recompute(rounds, window=_window(), on_invalid=_invalid_policy())
    _log_skipped(profile_id, bag_id, result.skipped_round_ids)
    value = result.value if result.available else None
    rounds_used = result.basis_round_count if result.available else 0
    ds_save_handicap(profile_id, bag_id, value, rounds_used=rounds_used)
    current_app.logger.info(
        "handicap_recalculated profile=%s bag=%s value=%s used=%s pool=%s",
        profile_id, bag_id, value, rounds_used, result.pool_size,
    )
    return result


def update_handicaps_after_round(profile_id: str, round_id: str, bag_id: str | None = None) -> bool:
    """Refresh the overall and bag handicaps once a round is completed.

    Failures are logged rather than raised so that completing a round never
    depends on the handicap refresh.
    """
    try:
        recalculate_handicap(profile_id)
        if bag_id:
            recalculate_handicap(profile_id, bag_id)
    except Exception:  # pylint: disable=broad-except
        current_app.logger.exception(
            "Error updating handicaps after round %s for profile %s", round_id, profile_id
        )
        return False
    return True


def _result_payload(profile_id: str, bag_id: str | None, result) -> dict:
    payload = result.to_dict()
    payload.update({
        'profile_id': profile_id,
        'bag_id': bag_id,
        'label': format_handicap(result),
        'color': handicap_color(result),
    })
    return payload


@bp.route('/health/db')
def health_db():
    """Database connectivity health check.

    Always returns HTTP 200 with a JSON body describing connection status.
    """
    url = os.environ.get('DATABASE_URL')
    if not url:
        return {
            'connected': False,
            'status': 'no_database_url',
            'message': 'DATABASE_URL is not set.',
        }
    try:
        from . import datastore_pg as _pg
        with _pg._get_conn() as conn, conn.cursor() as cur:
            cur.execute('SELECT current_user, current_database(), version()')
            user, db, ver = cur.fetchone()
        return {
            'connected': True,
            'status': 'ok',
            'user': user,
            'database': db,
            'server_version': (ver or '').split('\n')[0],
        }
    except Exception as e:  # pragma: no cover - best-effort health output
        return {'connected': False, 'status': 'error', 'error': str(e)}


@bp.route('/api/handicap/<profile_id>')
def current_handicap(profile_id):
    bag_id = _bag_arg()
    value = ds_get_current_handicap(profile_id, bag_id=bag_id)
    return {
        'profile_id': profile_id,
        'bag_id': bag_id,
        'handicap_index': value,
        'label': format_handicap(value),
        'color': handicap_color(value),
    }


@bp.route('/api/handicap/<profile_id>/recalculate', methods=['POST'])
def recalculate(profile_id):
    bag_id = _bag_arg()
    try:
        result = recalculate_handicap(profile_id, bag_id)
    except InvalidInputError as e:
        abort(400, description=f"Round {e.round_id}: {e}")
    return _result_payload(profile_id, bag_id, result)


@bp.route('/api/handicap/<profile_id>/history')
def handicap_history(profile_id):
    bag_id = _bag_arg()
    limit = _int_arg('limit', 50)
    rounds = _load_rounds(profile_id, bag_id)
    try:
        history = differential_history(rounds, limit=limit, on_invalid=_invalid_policy())
    except InvalidInputError as e:
        abort(400, description=f"Round {e.round_id}: {e}")
    _log_skipped(profile_id, bag_id, history.skipped_round_ids)
    by_id = {r.round_id: r for r in rounds}
    diffs = history.differentials

    rows = []
    for idx, diff in enumerate(diffs):
        # history is most recent first, so the previous round is the next row
        previous = diffs[idx + 1].value if idx + 1 < len(diffs) else None
        row = diff.to_dict()
        row.update({
            'label': format_differential(diff.value),
            'color': differential_color(diff.value),
            'trend': trend(diff.value, previous),
            'eligible': is_round_eligible(by_id[diff.round_id]),
        })
        rows.append(row)
    return {
        'profile_id': profile_id,
        'bag_id': bag_id,
        'differentials': rows,
        'recent_trend': trend(diffs[0].value, diffs[1].value) if len(diffs) >= 2 else None,
    }


@bp.route('/api/handicap/<profile_id>/expected-score')
def handicap_expected_score(profile_id):
    bag_id = _bag_arg()
    course_rating = _float_arg('course_rating')
    slope_rating = _float_arg('slope_rating')
    par = _int_arg('par', DEFAULT_PAR)
    value = ds_get_current_handicap(profile_id, bag_id=bag_id)
    try:
        score = expected_score(value, course_rating, slope_rating, par)
    except InvalidInputError as e:
        abort(400, description=str(e))
    return {
        'profile_id': profile_id,
        'bag_id': bag_id,
        'handicap_index': value,
        'par': par,
        'expected_score': score,
    }


@bp.route('/api/handicap/<profile_id>/bags')
def bag_overview(profile_id):
    bags = []
    for bag in ds_list_bags(profile_id):
        bags.append({
            **bag,
            'label': format_handicap(bag.get('handicap')),
            'color': handicap_color(bag.get('handicap')),
            'can_calculate': can_calculate_handicap(bag.get('completed_rounds') or 0),
        })
    return {'profile_id': profile_id, 'bags': bags}


@bp.route('/api/rounds/<round_id>/completed', methods=['POST'])
def round_completed(round_id):
    payload = request.get_json() or {}
    profile_id = payload.get('profile_id')
    if not profile_id:
        abort(400, description="profile_id is required.")
    bag_id = payload.get('bag_id') or None
    updated = update_handicaps_after_round(str(profile_id), round_id, bag_id)
    return {'round_id': round_id, 'handicaps_updated': updated}
