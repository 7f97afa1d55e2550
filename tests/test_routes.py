import pathlib
import sys

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from golfcompete import create_app


def _row(rid, date_played, gross, rating=72.0, slope=113, bag_id=None, completed=True):
    return {
        "round_id": rid,
        "date_played": date_played,
        "gross_score": gross,
        "course_rating": rating,
        "slope_rating": slope,
        "par": 72,
        "completed": completed,
        "bag_id": bag_id,
    }


@pytest.fixture()
def client(memory_store):
    memory_store["rounds"]["p1"] = [
        _row("r1", "2025-05-01", 90),
        _row("r2", "2025-05-08", 84, bag_id="blade"),
        _row("r3", "2025-05-15", 86, bag_id="blade"),
        _row("r4", "2025-05-22", 82, bag_id="blade"),
        _row("r5", "2025-05-29", 70, completed=False),
    ]
    memory_store["bags"]["blade"] = {"profile_id": "p1", "name": "Blades", "handicap": None}
    memory_store["bags"]["cavity"] = {"profile_id": "p1", "name": "Cavity backs", "handicap": None}

    app = create_app()
    app.config.update({"TESTING": True})
    with app.test_client() as c:
        yield c


def test_recalculate_overall(client, memory_store):
    res = client.post("/api/handicap/p1/recalculate")
    assert res.status_code == 200
    body = res.get_json()
    assert body["available"] is True
    # 4 completed rounds -> best 1 of (18, 12, 14, 10)
    assert body["handicap_index"] == 10.0
    assert body["rounds_used"] == 1
    assert body["total_rounds"] == 4
    assert body["label"] == "10.0"
    assert body["color"] == "primary"
    assert [d["round_id"] for d in body["differentials_used"]] == ["r4"]
    assert memory_store["profiles"]["p1"]["handicap"] == 10.0
    assert memory_store["history"][-1]["rounds_used"] == 1


def test_recalculate_bag_scoped(client, memory_store):
    res = client.post("/api/handicap/p1/recalculate?bag_id=blade")
    body = res.get_json()
    assert body["bag_id"] == "blade"
    assert body["handicap_index"] == 10.0
    assert body["total_rounds"] == 3
    assert memory_store["bags"]["blade"]["handicap"] == 10.0
    assert "p1" not in memory_store["profiles"]


def test_recalculate_insufficient_stores_null(client, memory_store):
    memory_store["profiles"]["p2"] = {"handicap": 12.0}
    memory_store["rounds"]["p2"] = [_row("x1", "2025-05-01", 90), _row("x2", "2025-05-02", 91)]
    res = client.post("/api/handicap/p2/recalculate")
    body = res.get_json()
    assert body["available"] is False
    assert body["handicap_index"] is None
    assert body["label"] == "N/A"
    assert body["required_rounds"] == 3
    assert memory_store["profiles"]["p2"]["handicap"] is None
    assert memory_store["history"] == []


def test_recalculate_skips_invalid_rounds(client, memory_store, caplog):
    memory_store["rounds"]["p1"].append(_row("broken", "2025-06-01", 80, slope=0))
    caplog.set_level("DEBUG")
    res = client.post("/api/handicap/p1/recalculate")
    body = res.get_json()
    assert res.status_code == 200
    assert body["handicap_index"] == 10.0
    assert body["skipped_round_ids"] == ["broken"]
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("handicap_round_skipped") and "round=broken" in m for m in messages)


def test_recalculate_raise_policy_returns_400(monkeypatch, memory_store):
    monkeypatch.setenv("HANDICAP_INVALID_ROUNDS", "raise")
    memory_store["rounds"]["p1"] = [_row("broken", "2025-06-01", 80, slope=0)]
    app = create_app()
    app.config.update({"TESTING": True})
    with app.test_client() as c:
        res = c.post("/api/handicap/p1/recalculate")
    assert res.status_code == 400
    assert memory_store["profiles"] == {}


def test_current_handicap(client, memory_store):
    memory_store["profiles"]["p1"] = {"handicap": -1.2}
    body = client.get("/api/handicap/p1").get_json()
    assert body["handicap_index"] == -1.2
    assert body["label"] == "+1.2"
    assert body["color"] == "success"


def test_current_handicap_missing(client):
    body = client.get("/api/handicap/nobody").get_json()
    assert body["handicap_index"] is None
    assert body["label"] == "N/A"


def test_history_rows(client):
    body = client.get("/api/handicap/p1/history").get_json()
    rows = body["differentials"]
    assert [r["round_id"] for r in rows] == ["r4", "r3", "r2", "r1"]
    assert [r["differential"] for r in rows] == [10.0, 14.0, 12.0, 18.0]
    assert rows[0]["label"] == "+10.0"
    assert rows[0]["trend"] == "down"
    assert rows[1]["trend"] == "up"
    assert rows[-1]["trend"] is None
    assert all(r["eligible"] is True for r in rows)
    assert body["recent_trend"] == "down"


def test_history_limit_and_bag(client):
    body = client.get("/api/handicap/p1/history?bag_id=blade&limit=2").get_json()
    assert [r["round_id"] for r in body["differentials"]] == ["r4", "r3"]


@pytest.mark.parametrize("limit", ["abc", "-1", "0", "2.5"])
def test_history_bad_limit(client, limit):
    assert client.get(f"/api/handicap/p1/history?limit={limit}").status_code == 400


def test_history_flags_implausible_rounds(client, memory_store):
    memory_store["rounds"]["p1"].append(_row("scramble", "2025-06-05", 58))
    rows = client.get("/api/handicap/p1/history?limit=2").get_json()["differentials"]
    assert [(r["round_id"], r["eligible"]) for r in rows] == [("scramble", False), ("r4", True)]


def test_history_skips_invalid_rounds(client, memory_store, caplog):
    memory_store["rounds"]["p1"].append(_row("broken", "2025-06-01", 80, slope=0))
    caplog.set_level("DEBUG")
    res = client.get("/api/handicap/p1/history")
    assert res.status_code == 200
    assert [r["round_id"] for r in res.get_json()["differentials"]] == ["r4", "r3", "r2", "r1"]
    messages = [r.getMessage() for r in caplog.records]
    assert any(m.startswith("handicap_round_skipped") and "round=broken" in m for m in messages)


def test_history_raise_policy_returns_400(monkeypatch, memory_store):
    monkeypatch.setenv("HANDICAP_INVALID_ROUNDS", "raise")
    memory_store["rounds"]["p1"] = [_row("broken", "2025-06-01", 80, slope=0)]
    app = create_app()
    app.config.update({"TESTING": True})
    with app.test_client() as c:
        res = c.get("/api/handicap/p1/history")
    assert res.status_code == 400


def test_expected_score(client, memory_store):
    memory_store["profiles"]["p1"] = {"handicap": 10.0}
    res = client.get("/api/handicap/p1/expected-score?course_rating=72.0&slope_rating=113&par=72")
    assert res.status_code == 200
    assert res.get_json()["expected_score"] == 82


def test_expected_score_without_handicap(client):
    res = client.get("/api/handicap/p1/expected-score?course_rating=72.0&slope_rating=113")
    assert res.status_code == 200
    assert res.get_json()["expected_score"] is None


@pytest.mark.parametrize(
    "query",
    ["course_rating=72.0", "slope_rating=113", "course_rating=72&slope_rating=0", "course_rating=x&slope_rating=113",
     "course_rating=72&slope_rating=113&par=72.9", "course_rating=72&slope_rating=113&par=0",
     "course_rating=72&slope_rating=113&par=-1"],
)
def test_expected_score_bad_course(client, memory_store, query):
    memory_store["profiles"]["p1"] = {"handicap": 10.0}
    assert client.get(f"/api/handicap/p1/expected-score?{query}").status_code == 400


def test_bag_overview(client, memory_store):
    memory_store["bags"]["blade"]["handicap"] = 0.0
    body = client.get("/api/handicap/p1/bags").get_json()
    bags = {b["bag_id"]: b for b in body["bags"]}
    assert bags["blade"]["completed_rounds"] == 3
    assert bags["blade"]["can_calculate"] is True
    assert bags["blade"]["label"] == "Scratch"
    assert bags["cavity"]["can_calculate"] is False
    assert bags["cavity"]["label"] == "N/A"


def test_round_completed_updates_overall_and_bag(client, memory_store):
    res = client.post("/api/rounds/r4/completed", json={"profile_id": "p1", "bag_id": "blade"})
    assert res.status_code == 200
    assert res.get_json()["handicaps_updated"] is True
    assert memory_store["profiles"]["p1"]["handicap"] == 10.0
    assert memory_store["bags"]["blade"]["handicap"] == 10.0


def test_round_completed_requires_profile(client):
    assert client.post("/api/rounds/r4/completed", json={}).status_code == 400


def test_health_db_without_url(client, monkeypatch):
    monkeypatch.delenv("DATABASE_URL")
    body = client.get("/health/db").get_json()
    assert body["connected"] is False
    assert body["status"] == "no_database_url"
