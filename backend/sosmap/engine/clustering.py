"""
Clustering Engine

Greedy screen-space clustering of visible markers.

Markers are processed in ascending id order. Each joins the first
provisional cluster whose centroid is within `radius_px` and whose
members are all within `radius_px` of it; otherwise it opens a new
provisional cluster. Provisional clusters smaller than `min_points`
release their members as singles. Above `max_zoom` clustering is off
so individual cases stay addressable.

Distances are screen pixels at the current zoom (Web-Mercator,
512px tiles), so membership changes as the user zooms.
"""

from dataclasses import dataclass, field
from typing import Iterable, List

import numpy as np

from sosmap.models.entities import Marker
from sosmap.models.geo import project_to_pixels
from sosmap.models.map_state import Cluster, MIXED, RenderableItem, cluster_id_for


DEFAULT_RADIUS_PX = 50.0
DEFAULT_MIN_POINTS = 3
DEFAULT_MAX_ZOOM = 14.0

# Slack for points sitting exactly on the radius
_EPSILON = 1e-9


@dataclass
class ClusterResult:
    """Output of one clustering pass"""
    clusters: List[Cluster] = field(default_factory=list)
    singles: List[Marker] = field(default_factory=list)

    def items(self) -> List[RenderableItem]:
        """Everything to render this frame: clusters first, then singles"""
        return [*self.clusters, *self.singles]

    def member_count(self) -> int:
        return sum(c.point_count for c in self.clusters) + len(self.singles)


@dataclass
class _Provisional:
    members: List[int]
    sum_xy: np.ndarray

    @property
    def centroid(self) -> np.ndarray:
        return self.sum_xy / len(self.members)


def cluster(
    visible: Iterable[Marker],
    zoom: float,
    radius_px: float = DEFAULT_RADIUS_PX,
    min_points: int = DEFAULT_MIN_POINTS,
    max_zoom: float = DEFAULT_MAX_ZOOM,
) -> ClusterResult:
    """
    Group nearby markers into clusters

    Args:
        visible: Markers that passed the filter
        zoom: Current map zoom
        radius_px: Maximum screen distance for membership
        min_points: Minimum members for a cluster to exist (at least 2)
        max_zoom: Clustering is disabled when zoom > max_zoom

    Returns:
        ClusterResult; every input marker is either a cluster member
        or a single, never both
    """
    ordered = sorted(visible, key=lambda m: m.id)

    if zoom > max_zoom or not ordered:
        return ClusterResult(clusters=[], singles=ordered)

    candidates = [m for m in ordered if m.clusterable]
    singles = [m for m in ordered if not m.clusterable]

    if not candidates:
        return ClusterResult(clusters=[], singles=singles)

    points = project_to_pixels(
        [m.lat for m in candidates],
        [m.lng for m in candidates],
        zoom,
    )
    limit = radius_px + _EPSILON

    provisional: List[_Provisional] = []
    for idx, point in enumerate(points):
        for group in provisional:
            if np.hypot(*(group.centroid - point)) > limit:
                continue
            spread = np.hypot(*(points[group.members] - point).T)
            if np.all(spread <= limit):
                group.members.append(idx)
                group.sum_xy = group.sum_xy + point
                break
        else:
            provisional.append(_Provisional(members=[idx], sum_xy=point.copy()))

    threshold = max(int(min_points), 2)
    clusters: List[Cluster] = []
    for group in provisional:
        members = [candidates[i] for i in group.members]
        if len(members) < threshold:
            singles.extend(members)
            continue
        clusters.append(_build_cluster(members))

    singles.sort(key=lambda m: m.id)
    return ClusterResult(clusters=clusters, singles=singles)


def _build_cluster(members: List[Marker]) -> Cluster:
    kinds = {m.kind for m in members}
    dominant = next(iter(kinds)) if len(kinds) == 1 else MIXED
    member_ids = sorted(m.id for m in members)

    return Cluster(
        id=cluster_id_for(member_ids),
        centroid=(
            sum(m.lat for m in members) / len(members),
            sum(m.lng for m in members) / len(members),
        ),
        member_ids=member_ids,
        dominant_kind=dominant,
    )
