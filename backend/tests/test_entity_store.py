"""
Entity Store Tests

Tests for snapshot / delta application and record parsing.
"""

import pytest

from sosmap.errors import MalformedBatch
from sosmap.models.entities import BatchType, EntityBatch, MarkerKind, marker_from_record
from sosmap.sync.entity_store import EntityStore, parse_records

from conftest import make_record


def snapshot(*records, kinds=None, batch_id=None):
    return EntityBatch(batch_id=batch_id, batch_type=BatchType.SNAPSHOT, records=list(records), kinds=kinds)


def delta(*records, retracted=()):
    return EntityBatch(batch_type=BatchType.DELTA, records=list(records), retracted=list(retracted))


@pytest.fixture
def store():
    return EntityStore()


class TestRecordParsing:
    """Test marker_from_record()"""

    def test_marker_field_names(self):
        marker = marker_from_record(make_record("sos-1", priority=3))
        assert marker.id == "sos-1"
        assert marker.kind is MarkerKind.SOS
        assert marker.payload == {"priority": 3}

    def test_backend_column_names(self):
        marker = marker_from_record({
            "id": 7, "type": "HELPER", "latitude": 22.3, "longitude": 73.1, "data": {"name": "A"}
        })
        assert marker.id == "7"
        assert marker.kind is MarkerKind.HELPER
        assert marker.lng == 73.1
        assert marker.payload == {"name": "A"}

    @pytest.mark.parametrize("record", [
        {"kind": "sos", "lat": 1, "lng": 1},
        {"id": "x", "kind": "ambulance", "lat": 1, "lng": 1},
        {"id": "x", "kind": "sos", "lat": 91, "lng": 1},
        {"id": "x", "kind": "sos", "lat": 1, "lng": -181},
        {"id": "x", "kind": "sos", "lat": None, "lng": 1},
        {"id": "x", "kind": "sos", "lat": float("nan"), "lng": 1},
        "not a record",
    ])
    def test_malformed_records_rejected(self, record):
        with pytest.raises(MalformedBatch):
            marker_from_record(record)

    def test_last_record_per_id_wins(self):
        parsed, rejected = parse_records([
            make_record("a", lat=1.0),
            make_record("a", lat=2.0),
        ])
        assert parsed["a"].lat == 2.0
        assert rejected == []

    def test_error_carries_record_id(self):
        _, rejected = parse_records([{"id": "bad", "kind": "sos", "lat": 100, "lng": 0}])
        assert rejected[0].record_id == "bad"


class TestSnapshot:
    """Snapshots replace state"""

    def test_snapshot_replaces_everything(self, store):
        store.apply(snapshot(make_record("a"), make_record("b")))
        result = store.apply(snapshot(make_record("b"), make_record("c")))

        assert [m.id for m in store.markers()] == ["b", "c"]
        assert result.removed == ["a"]
        assert result.upserted == ["c"]
        assert result.unchanged == 1

    def test_empty_snapshot_clears(self, store):
        store.apply(snapshot(make_record("a")))
        store.apply(snapshot())
        assert len(store) == 0

    def test_scoped_snapshot_leaves_other_kinds(self, store):
        store.apply(snapshot(make_record("sos-1"), make_record("h-1", kind="helper")))
        store.apply(snapshot(make_record("sos-2"), kinds=[MarkerKind.SOS]))

        assert [m.id for m in store.markers()] == ["h-1", "sos-2"]

    def test_malformed_record_dropped_rest_applied(self, store):
        result = store.apply(snapshot(
            make_record("a"),
            {"id": "b", "kind": "sos", "lat": 500, "lng": 0},
            make_record("c"),
        ))

        assert [m.id for m in store.markers()] == ["a", "c"]
        assert len(result.rejected) == 1

    def test_version_bumps_only_on_change(self, store):
        store.apply(snapshot(make_record("a")))
        version = store.version
        store.apply(snapshot(make_record("a")))
        assert store.version == version


class TestDelta:
    """Deltas upsert and retract"""

    def test_delta_upserts(self, store):
        store.apply(snapshot(make_record("a")))
        result = store.apply(delta(make_record("b"), make_record("a", lat=22.5)))

        assert [m.id for m in store.markers()] == ["a", "b"]
        assert store.get("a").lat == 22.5
        assert sorted(result.upserted) == ["a", "b"]

    def test_delta_retracts(self, store):
        store.apply(snapshot(make_record("a"), make_record("b")))
        result = store.apply(delta(retracted=["a", "missing"]))

        assert [m.id for m in store.markers()] == ["b"]
        assert result.removed == ["a"]

    def test_record_overrides_retraction_in_same_batch(self, store):
        store.apply(snapshot(make_record("a")))
        store.apply(delta(make_record("a", lat=22.4), retracted=["a"]))

        assert store.get("a").lat == 22.4

    def test_by_kind(self, store):
        store.apply(snapshot(make_record("a"), make_record("h", kind="helper")))
        assert [m.id for m in store.by_kind(MarkerKind.HELPER)] == ["h"]

    def test_apply_result_to_dict(self, store):
        result = store.apply(snapshot(make_record("a"), batch_id="b-1"))
        data = result.to_dict()
        assert data["batchId"] == "b-1"
        assert data["upserted"] == ["a"]
