from __future__ import annotations

import pytest

from leaderboard_core import ProjectionStore, StateReconciler, apply_change


def _change(kind, entity_type, **payload):
    return {"kind": kind, "entity_type": entity_type, "payload": payload}


def _athlete(cid, name="Ana", **extra):
    return {"id": cid, "name": name, "category": "RX", "gender": "F", **extra}


def test_duplicate_insert_yields_single_entry():
    once = StateReconciler()
    once.apply(_change("insert", "competitor", **_athlete(1)))

    twice = StateReconciler()
    first = twice.apply(_change("insert", "competitor", **_athlete(1)))
    second = twice.apply(_change("insert", "competitor", **_athlete(1)))

    assert first.action == "inserted"
    assert second.action == "noop"
    assert second.changed is False
    assert twice.store.count("competitor") == 1
    assert twice.store.get("competitor", 1) == once.store.get("competitor", 1)


def test_insert_of_existing_identity_overwrites_fields():
    reconciler = StateReconciler()
    reconciler.apply(_change("insert", "competitor", **_athlete(1, "Ana")))
    outcome = reconciler.apply(_change("insert", "competitor", **_athlete(1, "Ana Maria")))
    assert outcome.action == "replaced"
    assert reconciler.store.count("competitor") == 1
    assert reconciler.store.get("competitor", 1)["name"] == "Ana Maria"


def test_update_before_insert_synthesizes_entry():
    reconciler = StateReconciler()
    outcome = reconciler.apply(
        _change("update", "competitor", id=5, name="Late", category="Scaled", gender="M")
    )
    assert outcome.action == "synthesized"
    record = reconciler.store.get("competitor", 5)
    assert record["id"] == 5
    assert record["name"] == "Late"
    assert record["category"] == "Scaled"

    reconciler.apply(
        _change("insert", "competitor", id=5, name="Late", category="Scaled", gender="M")
    )
    assert reconciler.store.ids("competitor") == [5]


def test_delete_then_unrelated_update_leaves_identity_deleted():
    reconciler = StateReconciler()
    reconciler.apply_batch(
        [
            _change("insert", "competitor", **_athlete(1)),
            _change("insert", "competitor", **_athlete(2, "Bob")),
        ]
    )
    deleted = reconciler.apply(_change("delete", "competitor", id=1))
    reconciler.apply(_change("update", "competitor", id=2, name="Bobby"))

    assert deleted.action == "deleted"
    assert reconciler.store.contains("competitor", 1) is False
    assert reconciler.store.ids("competitor") == [2]
    assert reconciler.store.get("competitor", 2)["name"] == "Bobby"


def test_delete_of_unknown_identity_is_noop():
    reconciler = StateReconciler()
    version = reconciler.store.version
    outcome = reconciler.apply(_change("delete", "result", id=3))
    assert outcome.action == "noop"
    assert reconciler.store.version == version


def test_partial_update_merges_over_existing_record():
    reconciler = StateReconciler()
    reconciler.apply(
        _change("insert", "result", id=1, competitor_id=4, event_id=2, value="7:32")
    )
    outcome = reconciler.apply(_change("update", "result", id=1, score="7:10"))
    assert outcome.action == "replaced"
    assert reconciler.store.get("result", 1) == {
        "id": 1,
        "competitor_id": 4,
        "event_id": 2,
        "value": "7:10",
    }


def test_incomplete_update_for_unknown_identity_is_held_until_insert():
    reconciler = StateReconciler()
    held = reconciler.apply(_change("update", "result", id=5, value="7:10"))
    assert held.action == "deferred"
    assert held.changed is False
    assert reconciler.store.count("result") == 0
    assert reconciler.store.version == 0

    inserted = reconciler.apply(
        _change("insert", "result", id=5, competitor_id=1, event_id=1, value="9:00")
    )
    assert inserted.action == "inserted"
    assert reconciler.store.get("result", 5)["value"] == "7:10"


def test_held_update_is_folded_into_fetched_record():
    reconciler = StateReconciler()
    reconciler.apply(_change("update", "competitor", id=9, gender="M"))
    taken = reconciler.load_snapshot("competitor", [_athlete(9, "Ana")])
    assert taken == 1
    record = reconciler.store.get("competitor", 9)
    assert record["name"] == "Ana"
    assert record["gender"] == "M"


def test_delete_discards_held_update():
    reconciler = StateReconciler()
    reconciler.apply(_change("update", "competitor", id=9, gender="M"))
    reconciler.apply(_change("delete", "competitor", id=9))
    reconciler.apply(_change("insert", "competitor", **_athlete(9)))
    assert reconciler.store.get("competitor", 9)["gender"] == "F"


def test_incomplete_update_without_pending_map_raises():
    store = ProjectionStore()
    with pytest.raises(ValueError):
        apply_change(store, _change("update", "competitor", id=9, gender="F"))
    assert store.count("competitor") == 0


def test_malformed_change_events_raise_value_error():
    store = ProjectionStore()
    with pytest.raises(ValueError):
        apply_change(store, _change("upsert", "competitor", **_athlete(1)))
    with pytest.raises(ValueError):
        apply_change(store, _change("insert", "medal", id=1))
    with pytest.raises(ValueError):
        apply_change(store, _change("delete", "result"))
    with pytest.raises(ValueError):
        apply_change(store, _change("insert", "event", id=1, name="E", scoring_mode="distance"))
    assert store.version == 0


def test_realtime_shaped_notifications_are_accepted():
    reconciler = StateReconciler()
    reconciler.apply(
        {
            "eventType": "INSERT",
            "table": "workouts",
            "new": {"id": 1, "name": "Open 25.1", "description": "", "scoretype": "time"},
            "old": {},
        }
    )
    reconciler.apply(
        {
            "eventType": "INSERT",
            "table": "scores",
            "new": {"id": 3, "athlete_id": 1, "workout_id": 1, "score": "7:32", "isValidated": True},
            "old": {},
        }
    )
    assert reconciler.store.get("event", 1)["scoring_mode"] == "time"
    assert reconciler.store.get("result", 3)["value"] == "7:32"

    reconciler.apply({"eventType": "DELETE", "table": "scores", "new": {}, "old": {"id": 3}})
    assert reconciler.store.count("result") == 0


def test_scoring_mode_change_flags_reinterpreted_results():
    reconciler = StateReconciler()
    reconciler.apply_batch(
        [
            _change("insert", "event", id=1, name="E", description="", scoring_mode="time"),
            _change("insert", "result", id=1, competitor_id=1, event_id=1, value="7:32"),
            _change("insert", "result", id=2, competitor_id=2, event_id=1, value="8:15"),
        ]
    )
    outcome = reconciler.apply(_change("update", "event", id=1, scoring_mode="reps"))
    assert outcome.action == "replaced"
    assert outcome.reinterpreted_results == 2
    assert reconciler.store.get("event", 1)["scoring_mode"] == "reps"

    renamed = reconciler.apply(_change("update", "event", id=1, name="Renamed"))
    assert renamed.reinterpreted_results == 0


def test_competitor_order_survives_updates():
    reconciler = StateReconciler()
    reconciler.apply_batch(
        [
            _change("insert", "competitor", **_athlete(1)),
            _change("insert", "competitor", **_athlete(2, "Bob")),
            _change("insert", "competitor", **_athlete(3, "Cara")),
            _change("update", "competitor", id=1, name="Ana B"),
        ]
    )
    assert reconciler.store.ids("competitor") == [1, 2, 3]


def test_apply_batch_returns_outcomes_and_bumps_version():
    reconciler = StateReconciler()
    outcomes = reconciler.apply_batch(
        [
            _change("insert", "competitor", **_athlete(1)),
            _change("insert", "competitor", **_athlete(1)),
            _change("delete", "competitor", id=1),
        ]
    )
    assert [o.action for o in outcomes] == ["inserted", "noop", "deleted"]
    assert outcomes[-1].version == reconciler.store.version == 2


def test_load_snapshot_keeps_streamed_state():
    reconciler = StateReconciler()
    reconciler.apply(_change("update", "competitor", **_athlete(2, "Streamed")))
    reconciler.apply(_change("delete", "competitor", id=3))

    taken = reconciler.load_snapshot(
        "competitor",
        [_athlete(1, "A"), _athlete(2, "Fetched"), _athlete(3, "C"), _athlete(4, "D")],
    )

    assert taken == 2
    assert reconciler.store.ids("competitor") == [1, 2, 4]
    assert reconciler.store.get("competitor", 2)["name"] == "Streamed"


def test_load_snapshot_clears_touched_identities():
    reconciler = StateReconciler()
    reconciler.apply(_change("delete", "competitor", id=3))
    reconciler.load_snapshot("competitor", [_athlete(1, "A")])
    assert reconciler._touched["competitor"] == set()

    # a refetch after the load is taken as-is, including the once-deleted id
    taken = reconciler.load_snapshot("competitor", [_athlete(1, "A"), _athlete(3, "C")])
    assert taken == 2
    assert reconciler.store.ids("competitor") == [1, 3]


def test_load_snapshot_treats_streamed_results_as_most_recent():
    reconciler = StateReconciler()
    reconciler.apply(
        _change("insert", "result", id=7, competitor_id=1, event_id=1, value="6:00")
    )
    reconciler.load_snapshot(
        "result",
        [
            {"id": 7, "competitor_id": 1, "event_id": 1, "value": "9:00"},
            {"id": 8, "competitor_id": 2, "event_id": 1, "value": "8:00"},
            {"id": "bad"},
        ],
    )
    assert reconciler.store.ids("result") == [8, 7]
    assert reconciler.store.get("result", 7)["value"] == "6:00"


def test_snapshot_is_read_only_and_isolated_from_later_writes():
    reconciler = StateReconciler()
    reconciler.apply(_change("insert", "competitor", **_athlete(1)))
    snapshot = reconciler.snapshot()
    with pytest.raises(TypeError):
        snapshot.competitors[1]["name"] = "Hacked"
    with pytest.raises(TypeError):
        snapshot.competitors[2] = _athlete(2)

    reconciler.apply(_change("update", "competitor", id=1, name="Ana Maria"))
    assert snapshot.competitor(1)["name"] == "Ana"
    assert reconciler.snapshot().competitor(1)["name"] == "Ana Maria"
    assert reconciler.snapshot().version > snapshot.version
