import os
from flask import Flask

from .handicap import DEFAULT_WINDOW


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except ValueError:
        return default


def create_app():
    app = Flask(__name__)

    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        raise RuntimeError(
            "DATABASE_URL is required. Rounds and handicaps are stored in PostgreSQL."
        )

    policy = os.environ.get("HANDICAP_INVALID_ROUNDS", "skip").strip().lower()
    if policy not in ("skip", "raise"):
        app.logger.warning("Unknown HANDICAP_INVALID_ROUNDS=%r; using 'skip'", policy)
        policy = "skip"
    app.config.update(
        HANDICAP_WINDOW=_env_int("HANDICAP_WINDOW", DEFAULT_WINDOW),
        HANDICAP_INVALID_ROUNDS=policy,
    )

    # Initialize connection pool early (optional; direct connect works if pool init fails)
    try:
        from . import datastore_pg as _pg
        _pg.init_pool(
            minconn=_env_int("DB_POOL_MIN", 1),
            maxconn=_env_int("DB_POOL_MAX", 10),
        )
    except Exception:  # pragma: no cover
        app.logger.exception("PostgreSQL pool initialization failed; continuing without pool")

    from . import routes
    app.register_blueprint(routes.bp)

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port)
