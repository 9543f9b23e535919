"""
Marker Registry Tests

Tests for reconciling rendered symbols against each frame.
"""

import random

import pytest

from sosmap.engine.clustering import cluster
from sosmap.engine.marker_registry import MarkerRegistry, ReconcileResult
from sosmap.errors import ReconcileInvariantError
from sosmap.models.entities import MarkerKind
from sosmap.models.map_state import Cluster, cluster_id_for
from sosmap.render.visuals import SELECTED_SCALE

from conftest import make_marker


def make_cluster(member_ids, lat=22.30, lng=73.18):
    return Cluster(
        id=cluster_id_for(member_ids),
        centroid=(lat, lng),
        member_ids=sorted(member_ids),
        dominant_kind=MarkerKind.SOS,
    )


@pytest.fixture
def registry(renderer):
    return MarkerRegistry(renderer)


class TestReconcileBasics:
    """Test add / remove / update"""

    def test_first_frame_creates_every_item(self, registry, renderer):
        items = [make_marker("a"), make_marker("b"), make_cluster(["c", "d", "e"])]
        result = registry.reconcile(items)

        assert sorted(result.added) == sorted(i.id for i in items)
        assert result.removed == []
        assert len(renderer.ops('create')) == 3
        assert len(registry) == 3

    def test_same_frame_twice_is_noop(self, registry, renderer):
        items = [make_marker("a"), make_marker("b")]
        registry.reconcile(items)
        renderer.reset_calls()

        result = registry.reconcile(list(items))

        assert result.is_noop
        assert renderer.calls == []

    def test_vanished_item_is_released(self, registry, renderer):
        registry.reconcile([make_marker("a"), make_marker("b")])
        renderer.reset_calls()

        result = registry.reconcile([make_marker("a")])

        assert result.removed == ["b"]
        assert len(renderer.ops('remove')) == 1
        assert renderer.marker_ids() == ["a"]

    def test_moved_marker_updates_in_place(self, registry, renderer):
        registry.reconcile([make_marker("a", lat=22.30)])
        handle_before = next(iter(renderer.markers))
        renderer.reset_calls()

        result = registry.reconcile([make_marker("a", lat=22.31)])

        assert result.updated == ["a"]
        assert renderer.calls == [('update', handle_before)]
        assert renderer.markers[handle_before]['lat'] == 22.31

    def test_payload_change_updates(self, registry, renderer):
        registry.reconcile([make_marker("a", priority=1)])
        renderer.reset_calls()

        result = registry.reconcile([make_marker("a", priority=4)])

        assert result.updated == ["a"]
        assert renderer.ops('create') == []

    def test_empty_frame_releases_everything(self, registry, renderer):
        registry.reconcile([make_marker("a"), make_cluster(["x", "y", "z"])])
        result = registry.reconcile([])

        assert len(result.removed) == 2
        assert renderer.markers == {}
        assert len(registry) == 0

    def test_result_lists_are_sorted(self, registry):
        result = registry.reconcile([make_marker("c"), make_marker("a"), make_marker("b")])
        assert result.added == ["a", "b", "c"]


class TestInvariants:
    """Test handle map invariants"""

    def test_duplicate_ids_rejected_before_any_render_call(self, registry, renderer):
        with pytest.raises(ReconcileInvariantError):
            registry.reconcile([make_marker("a"), make_marker("a", lat=22.5)])

        assert renderer.calls == []
        assert len(registry) == 0

    def test_handles_match_frame_after_random_sequence(self, registry, renderer):
        rng = random.Random(42)
        pool = [make_marker(f"m-{i}", lat=22.3 + i * 0.01) for i in range(20)]

        for _ in range(30):
            frame = rng.sample(pool, rng.randint(0, len(pool)))
            registry.reconcile(frame)

            assert registry.rendered_ids() == frozenset(m.id for m in frame)
            assert len(renderer.markers) == len(frame)

    def test_no_handle_released_twice(self, registry, renderer):
        # RecordingRenderer asserts on double release
        registry.reconcile([make_marker("a"), make_marker("b")])
        registry.reconcile([])
        registry.reconcile([])
        registry.clear()

        assert len(renderer.ops('remove')) == 2

    def test_idempotent_on_any_frame(self, registry, renderer):
        frame = [make_marker("a"), make_cluster(["b", "c", "d"]), make_marker("e")]
        registry.reconcile([make_marker("z")])
        registry.reconcile(frame)
        renderer.reset_calls()

        assert registry.reconcile(frame).is_noop
        assert renderer.calls == []


class TestClusterRekey:
    """A cluster whose membership changed keeps its symbol"""

    def test_grown_cluster_reuses_handle(self, registry, renderer):
        old = make_cluster(["a", "b", "c"])
        registry.reconcile([old])
        handle = next(iter(renderer.markers))
        renderer.reset_calls()

        new = make_cluster(["a", "b", "c", "d"], lat=22.301)
        result = registry.reconcile([new])

        assert result.rekeyed == {new.id: old.id}
        assert result.added == []
        assert result.removed == []
        assert renderer.calls == [('update', handle)]
        assert renderer.markers[handle]['visual'].label == "4"
        assert new.id in registry
        assert old.id not in registry

    def test_disjoint_clusters_are_not_rekeyed(self, registry):
        registry.reconcile([make_cluster(["a", "b", "c"])])
        result = registry.reconcile([make_cluster(["x", "y", "z"])])

        assert result.rekeyed == {}
        assert len(result.added) == 1
        assert len(result.removed) == 1

    def test_old_cluster_used_once(self, registry):
        old = make_cluster(["a", "b", "c", "d", "e", "f"])
        registry.reconcile([old])

        left = make_cluster(["a", "b", "c"])
        right = make_cluster(["d", "e", "f"], lat=22.4)
        result = registry.reconcile([left, right])

        assert list(result.rekeyed.values()) == [old.id]
        assert len(result.added) == 1

    def test_rekey_from_clustering_engine(self, registry):
        markers = [make_marker(f"sos-{i}", lat=22.30 + i * 0.001) for i in range(4)]
        registry.reconcile(cluster(markers[:3], zoom=10).items())
        result = registry.reconcile(cluster(markers, zoom=10).items())

        assert len(result.rekeyed) == 1
        assert len(registry) == 1


class TestSelection:
    """Test selection highlight"""

    def test_select_restyles_only_selected(self, registry, renderer):
        registry.reconcile([make_marker("a"), make_marker("b"), make_marker("c")])
        renderer.reset_calls()

        assert registry.set_selected("b") is True
        assert len(renderer.ops('style')) == 1

        handle = renderer.ops('style')[0][1]
        assert renderer.markers[handle]['id'] == "b"
        assert renderer.markers[handle]['visual'].scale == SELECTED_SCALE

    def test_moving_selection_restyles_previous_and_new(self, registry, renderer):
        registry.reconcile([make_marker("a"), make_marker("b"), make_marker("c")])
        registry.set_selected("a")
        renderer.reset_calls()

        registry.set_selected("c")

        styled = [renderer.markers[h]['id'] for _, h in renderer.ops('style')]
        assert sorted(styled) == ["a", "c"]

    def test_selecting_same_id_again_is_noop(self, registry, renderer):
        registry.reconcile([make_marker("a")])
        registry.set_selected("a")
        renderer.reset_calls()

        registry.set_selected("a")
        assert renderer.calls == []

    def test_select_unrendered_id(self, registry):
        registry.reconcile([make_marker("a")])
        assert registry.set_selected("missing") is False
        assert registry.selected_id == "missing"

    def test_new_symbol_created_with_selection(self, registry, renderer):
        registry.set_selected("a")
        registry.reconcile([make_marker("a")])

        visual = next(iter(renderer.markers.values()))['visual']
        assert visual.scale == SELECTED_SCALE


class TestTeardown:
    """Test clear() and stats"""

    def test_clear_releases_all(self, registry, renderer):
        registry.reconcile([make_marker("a"), make_marker("b")])
        released = registry.clear()

        assert released == ["a", "b"]
        assert renderer.markers == {}

    def test_stats(self, registry):
        registry.reconcile([make_marker("a")])
        registry.reconcile([])
        stats = registry.get_stats()

        assert stats['rendered'] == 0
        assert stats['reconcileCount'] == 2
        assert stats['totalCreated'] == 1
        assert stats['totalReleased'] == 1

    def test_result_to_dict(self):
        result = ReconcileResult(added=["a"], removed=["b"], rekeyed={"c2": "c1"})
        assert result.to_dict() == {
            'added': ["a"],
            'updated': [],
            'removed': ["b"],
            'rekeyed': {"c2": "c1"},
        }
