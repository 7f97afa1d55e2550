import os
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import RealDictCursor
from contextlib import contextmanager


_POOL: Optional[pg_pool.AbstractConnectionPool] = None

_CALCULATION_METHOD = "WHS"


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Common connection kwargs: connect_timeout + TCP keepalives.

    Defaults:
      - connect_timeout: 10 seconds (overridable via DB_CONNECT_TIMEOUT)
      - keepalives: enabled by default; can be disabled by DB_KEEPALIVES=0
      - keepalive tunables applied if provided (IDLE/INTERVAL/COUNT)
    """
    kwargs: Dict[str, Any] = {}
    ct_env = _env_int("DB_CONNECT_TIMEOUT")
    kwargs["connect_timeout"] = ct_env if ct_env is not None else 10

    ka_env = os.environ.get("DB_KEEPALIVES")
    if ka_env is None:
        kwargs["keepalives"] = 1
    else:
        kwargs["keepalives"] = 0 if str(ka_env).lower() in ("0", "false") else 1

    for suffix in ("IDLE", "INTERVAL", "COUNT"):
        val = _env_int(f"DB_KEEPALIVES_{suffix}")
        if val is not None:
            kwargs[f"keepalives_{suffix.lower()}"] = val
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Initialize a global connection pool using DATABASE_URL.

    Safe to call multiple times; subsequent calls are ignored once a pool exists.
    """
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        # Leave _POOL as None; callers fall back to direct connections
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())


def _is_healthy(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        # Clear implicit transaction started by SELECT when autocommit is off
        if not getattr(conn, "autocommit", False):
            conn.rollback()
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False
    return True


def _release(conn) -> None:
    # status 0 = idle, 1 = active, 2 = intrans, 3 = inerror
    if getattr(conn, "closed", 0) == 0 and not getattr(conn, "autocommit", False):
        if getattr(conn, "status", 0) in (1, 2, 3):
            conn.rollback()


@contextmanager
def _get_conn():
    """Yield a database connection from the pool if available, else direct.

    A pooled connection that fails a ``SELECT 1`` ping is discarded and the
    checkout is retried once.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is None:
        conn = psycopg2.connect(url, **_connect_kwargs())
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return

    conn = _POOL.getconn()
    if not _is_healthy(conn):
        _POOL.putconn(conn, close=True)
        conn = _POOL.getconn()
        if not _is_healthy(conn):
            _POOL.putconn(conn, close=True)
            raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        try:
            _release(conn)
        finally:
            _POOL.putconn(conn)


def _round_row(row: Dict[str, Any]) -> Dict[str, Any]:
    played = row.get("date_played")
    return {
        "round_id": str(row.get("round_id")),
        "date_played": played.isoformat() if hasattr(played, "isoformat") else played,
        "gross_score": row.get("gross_score"),
        "course_rating": float(row["course_rating"]) if row.get("course_rating") is not None else None,
        "slope_rating": row.get("slope_rating"),
        "par": row.get("par"),
        "completed": row.get("status") == "completed",
        "bag_id": str(row["bag_id"]) if row.get("bag_id") is not None else None,
    }


def fetch_rounds(profile_id: str, bag_id: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return a golfer's rounds joined with the tee ratings they were played from.

    Rounds come back most recent first. When ``bag_id`` is given only rounds
    played with that bag are returned.
    """
    sql = """
        SELECT r.id AS round_id,
               r.round_date AS date_played,
               r.total_score AS gross_score,
               r.status,
               r.bag_id,
               t.men_rating AS course_rating,
               t.men_slope AS slope_rating,
               t.par
        FROM rounds r
        JOIN course_tees t ON t.id = r.course_tee_id
        WHERE r.profile_id = %s
    """
    params: List[Any] = [profile_id]
    if bag_id:
        sql += " AND r.bag_id = %s"
        params.append(bag_id)
    sql += " ORDER BY r.round_date DESC, r.id"
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(sql, params)
        return [_round_row(r) for r in cur.fetchall() or []]


def save_handicap(
    profile_id: str,
    bag_id: Optional[str],
    value: Optional[float],
    rounds_used: int = 0,
) -> None:
    """Store the current handicap on the bag or the profile.

    ``value`` of None clears the stored handicap. A history row is written to
    ``handicap_indexes`` only when a value exists.
    """
    with _get_conn() as conn, conn.cursor() as cur:
        if bag_id:
            cur.execute(
                "UPDATE bags SET handicap = %s, updated_at = NOW() WHERE id = %s",
                (value, bag_id),
            )
        else:
            cur.execute(
                "UPDATE profiles SET handicap = %s, updated_at = NOW() WHERE id = %s",
                (value, profile_id),
            )
        if value is not None:
            cur.execute(
                """
                INSERT INTO handicap_indexes
                    (profile_id, bag_id, handicap_index, effective_date, calculation_method, rounds_used)
                VALUES (%s, %s, %s, NOW(), %s, %s)
                """,
                (profile_id, bag_id, value, _CALCULATION_METHOD, int(rounds_used)),
            )
        conn.commit()


def get_current_handicap(profile_id: str, bag_id: Optional[str] = None) -> Optional[float]:
    with _get_conn() as conn, conn.cursor() as cur:
        if bag_id:
            cur.execute("SELECT handicap FROM bags WHERE id = %s", (bag_id,))
        else:
            cur.execute("SELECT handicap FROM profiles WHERE id = %s", (profile_id,))
        row = cur.fetchone()
    if not row or row[0] is None:
        return None
    return float(row[0])


def list_bags(profile_id: str) -> List[Dict[str, Any]]:
    """Return the golfer's bags with their stored handicap and completed round count."""
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT b.id AS bag_id,
                   b.name,
                   b.handicap,
                   COUNT(r.id) FILTER (WHERE r.status = 'completed') AS completed_rounds
            FROM bags b
            LEFT JOIN rounds r ON r.bag_id = b.id
            WHERE b.profile_id = %s
            GROUP BY b.id, b.name, b.handicap
            ORDER BY b.name
            """,
            (profile_id,),
        )
        rows = cur.fetchall() or []
    return [
        {
            "bag_id": str(r.get("bag_id")),
            "name": r.get("name"),
            "handicap": float(r["handicap"]) if r.get("handicap") is not None else None,
            "completed_rounds": int(r.get("completed_rounds") or 0),
        }
        for r in rows
    ]
