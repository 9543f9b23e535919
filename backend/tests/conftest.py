"""
Shared test fixtures

RecordingRenderer stands in for the map library: it hands out handles
and records every primitive call so tests can assert on exact render
traffic.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from sosmap.models.entities import Marker, MarkerKind
from sosmap.render.renderer import MapRenderer


class RecordingRenderer(MapRenderer):
    """In-memory renderer recording (op, args) tuples"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.markers: Dict[str, Dict[str, Any]] = {}
        self.lines: Dict[str, Dict[str, Any]] = {}
        self.heatmap: Optional[list] = None
        self.zoom = 12.0
        self.pitch = 0.0
        self._ids = itertools.count(1)

    # Point markers
    def create_marker(self, item_id, lat, lng, visual):
        handle = f"h{next(self._ids)}"
        self.markers[handle] = {'id': item_id, 'lat': lat, 'lng': lng, 'visual': visual}
        self.calls.append(('create', item_id))
        return handle

    def update_marker(self, handle, lat, lng, visual):
        assert handle in self.markers, f"update of released handle {handle}"
        self.markers[handle].update(lat=lat, lng=lng, visual=visual)
        self.calls.append(('update', handle))

    def set_marker_style(self, handle, visual):
        assert handle in self.markers, f"restyle of released handle {handle}"
        self.markers[handle]['visual'] = visual
        self.calls.append(('style', handle))

    def remove_marker(self, handle):
        assert handle in self.markers, f"double release of {handle}"
        del self.markers[handle]
        self.calls.append(('remove', handle))

    # Line layers
    def add_line(self, layer_id, coordinates, style):
        handle = f"l{next(self._ids)}"
        self.lines[handle] = {'layer': layer_id, 'coordinates': list(coordinates), 'style': style}
        self.calls.append(('add_line', layer_id))
        return handle

    def update_line(self, handle, coordinates):
        assert handle in self.lines
        self.lines[handle]['coordinates'] = list(coordinates)
        self.calls.append(('update_line', handle))

    def remove_line(self, handle):
        assert handle in self.lines
        del self.lines[handle]
        self.calls.append(('remove_line', handle))

    # Heatmap
    def set_heatmap(self, points):
        self.heatmap = list(points)
        self.calls.append(('heatmap', len(self.heatmap)))

    def clear_heatmap(self):
        self.heatmap = None
        self.calls.append(('clear_heatmap',))

    # Camera
    def ease_camera(self, center, zoom, pitch, bearing, duration_ms, easing):
        self.zoom = zoom
        self.pitch = pitch
        self.calls.append(('ease', {
            'center': center,
            'zoom': zoom,
            'pitch': pitch,
            'bearing': bearing,
            'duration_ms': duration_ms,
            'easing': easing,
        }))

    def stop_camera(self):
        self.calls.append(('stop_camera',))

    def get_zoom(self):
        return self.zoom

    def get_pitch(self):
        return self.pitch

    # Helpers
    def ops(self, name: str) -> list:
        return [c for c in self.calls if c[0] == name]

    def eases(self) -> List[Dict[str, Any]]:
        return [c[1] for c in self.calls if c[0] == 'ease']

    def marker_ids(self) -> List[str]:
        return sorted(m['id'] for m in self.markers.values())

    def reset_calls(self):
        self.calls.clear()


def make_marker(marker_id: str, kind: MarkerKind = MarkerKind.SOS, lat: float = 22.30,
                lng: float = 73.18, **payload) -> Marker:
    return Marker(id=marker_id, kind=kind, lat=lat, lng=lng, payload=payload)


def make_record(marker_id: str, kind: str = "sos", lat: float = 22.30, lng: float = 73.18, **payload) -> dict:
    return {'id': marker_id, 'kind': kind, 'lat': lat, 'lng': lng, 'payload': payload}


@pytest.fixture
def renderer():
    return RecordingRenderer()
