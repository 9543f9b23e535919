"""
Camera Controller

Two-phase "orbital descent" fly-to used when a marker is selected:

1. Ease out to a wide overview zoom centred on the target, flat pitch,
   over half the duration.
2. When phase 1 ends, ease in to the final zoom with elevated pitch over
   the remaining duration.

Only one animation runs at a time. A new fly_to() or cancel() aborts the
pending phase-2 timer and any in-flight easing.
"""

import asyncio
import itertools
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from sosmap.errors import AnimationInterrupted
from sosmap.models.map_state import LatLng
from sosmap.render.renderer import MapRenderer

logger = logging.getLogger(__name__)


DEFAULT_OVERVIEW_ZOOM = 2.0
DEFAULT_FINAL_ZOOM = 15.0
DEFAULT_FINAL_PITCH = 45.0
DEFAULT_DURATION_MS = 2000.0


def ease_out(t: float) -> float:
    """Quadratic ease-out over normalised time, clamped to [0, 1]"""
    t = min(max(t, 0.0), 1.0)
    return t * (2.0 - t)


class AnimationOutcome(str, Enum):
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"


class CameraAnimation:
    """
    Handle for one fly-to

    Usage:
        animation = camera.fly_to((40.7128, -74.0060))
        outcome = await animation.wait()
    """

    def __init__(
        self,
        animation_id: int,
        target: LatLng,
        overview_zoom: float,
        final_zoom: float,
        final_pitch: float,
        total_duration_ms: float,
        loop: asyncio.AbstractEventLoop,
    ):
        self.id = animation_id
        self.target = target
        self.overview_zoom = overview_zoom
        self.final_zoom = final_zoom
        self.final_pitch = final_pitch
        self.total_duration_ms = total_duration_ms
        self.phase = 0

        self._future: asyncio.Future = loop.create_future()
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def phase_one_ms(self) -> float:
        return self.total_duration_ms / 2.0

    @property
    def phase_two_ms(self) -> float:
        return self.total_duration_ms - self.phase_one_ms

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def outcome(self) -> Optional[AnimationOutcome]:
        return self._future.result() if self._future.done() else None

    def _schedule(self, timer: asyncio.TimerHandle):
        self._timer = timer

    def _finish(self, outcome: AnimationOutcome):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._future.done():
            self._future.set_result(outcome)

    async def wait(self) -> AnimationOutcome:
        """Wait until the animation completes or is interrupted"""
        return await asyncio.shield(self._future)

    async def result(self) -> AnimationOutcome:
        """
        Like wait(), but raise on interruption

        Raises:
            AnimationInterrupted: a newer fly-to or cancel() ended this one
        """
        outcome = await self.wait()
        if outcome is AnimationOutcome.INTERRUPTED:
            raise AnimationInterrupted(f"Camera animation {self.id} interrupted")
        return outcome

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'target': list(self.target),
            'overviewZoom': self.overview_zoom,
            'finalZoom': self.final_zoom,
            'finalPitch': self.final_pitch,
            'durationMs': self.total_duration_ms,
            'phase': self.phase,
            'outcome': self.outcome.value if self.outcome else None,
        }


class CameraController:
    """
    Owns the single active camera animation

    Usage:
        camera = CameraController(renderer)
        animation = camera.fly_to((22.30, 73.18), final_zoom=15)
        camera.cancel()
    """

    def __init__(
        self,
        renderer: MapRenderer,
        overview_zoom: float = DEFAULT_OVERVIEW_ZOOM,
        final_zoom: float = DEFAULT_FINAL_ZOOM,
        final_pitch: float = DEFAULT_FINAL_PITCH,
        duration_ms: float = DEFAULT_DURATION_MS,
        on_phase: Optional[Callable[[CameraAnimation], None]] = None,
    ):
        """
        Args:
            renderer: Render collaborator providing ease_camera/stop_camera
            overview_zoom: Phase-1 zoom
            final_zoom: Default phase-2 zoom
            final_pitch: Phase-2 pitch in degrees
            duration_ms: Default total duration
            on_phase: Called after each phase starts (e.g. to flush renderer)
        """
        self.renderer = renderer
        self.overview_zoom = overview_zoom
        self.default_final_zoom = final_zoom
        self.final_pitch = final_pitch
        self.default_duration_ms = duration_ms
        self.on_phase = on_phase

        self._active: Optional[CameraAnimation] = None
        self._ids = itertools.count(1)

        # Statistics
        self.started = 0
        self.completed = 0
        self.interrupted = 0
        self.phase_two_started = 0

    @property
    def active(self) -> Optional[CameraAnimation]:
        return self._active

    def fly_to(
        self,
        target: LatLng,
        final_zoom: Optional[float] = None,
        total_duration_ms: Optional[float] = None,
    ) -> CameraAnimation:
        """
        Start a two-phase fly-to, interrupting any running animation

        Must be called from the event loop thread.

        Args:
            target: (lat, lng) to centre on
            final_zoom: Phase-2 zoom (default from config)
            total_duration_ms: Both phases together

        Returns:
            CameraAnimation handle
        """
        loop = asyncio.get_running_loop()
        self.cancel()

        final_zoom = self.default_final_zoom if final_zoom is None else float(final_zoom)
        duration = self.default_duration_ms if total_duration_ms is None else max(float(total_duration_ms), 0.0)

        overview = self.overview_zoom
        if final_zoom <= overview:
            overview = max(final_zoom - 1.0, 0.0)

        animation = CameraAnimation(
            animation_id=next(self._ids),
            target=(float(target[0]), float(target[1])),
            overview_zoom=overview,
            final_zoom=final_zoom,
            final_pitch=self.final_pitch,
            total_duration_ms=duration,
            loop=loop,
        )
        self._active = animation
        self.started += 1

        animation.phase = 1
        self.renderer.ease_camera(
            animation.target,
            zoom=overview,
            pitch=0.0,
            bearing=0.0,
            duration_ms=animation.phase_one_ms,
            easing=ease_out,
        )
        animation._schedule(loop.call_later(animation.phase_one_ms / 1000.0, self._start_phase_two, animation))
        self._notify(animation)

        logger.debug("[Camera] fly_to #%d -> %s zoom %.1f", animation.id, animation.target, final_zoom)
        return animation

    def _start_phase_two(self, animation: CameraAnimation):
        if animation is not self._active or animation.done:
            return

        animation.phase = 2
        self.phase_two_started += 1
        self.renderer.ease_camera(
            animation.target,
            zoom=animation.final_zoom,
            pitch=animation.final_pitch,
            bearing=0.0,
            duration_ms=animation.phase_two_ms,
            easing=ease_out,
        )
        loop = asyncio.get_running_loop()
        animation._schedule(loop.call_later(animation.phase_two_ms / 1000.0, self._complete, animation))
        self._notify(animation)

    def _complete(self, animation: CameraAnimation):
        if animation is not self._active:
            return
        self._active = None
        self.completed += 1
        animation._finish(AnimationOutcome.COMPLETED)

    def _notify(self, animation: CameraAnimation):
        if self.on_phase is not None:
            self.on_phase(animation)

    def cancel(self) -> bool:
        """
        Abort the active animation; safe to call repeatedly

        Returns:
            True if an animation was interrupted
        """
        animation = self._active
        if animation is None or animation.done:
            self._active = None
            return False

        self._active = None
        animation._finish(AnimationOutcome.INTERRUPTED)
        self.renderer.stop_camera()
        self.interrupted += 1
        logger.debug("[Camera] Animation #%d interrupted in phase %d", animation.id, animation.phase)
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {
            'active': self._active.to_dict() if self._active else None,
            'started': self.started,
            'completed': self.completed,
            'interrupted': self.interrupted,
            'phaseTwoStarted': self.phase_two_started,
        }
