"""Render loop — drives the compositor for preview and for file export.

Preview ticks at a fixed interval and only hands the latest composite to
a callback; nothing is buffered. Export advances one frame per iteration
and awaits its sink, so a slow encoder paces the loop instead of frames
piling up in memory. Both loops check whether the source has ended or
been paused before scheduling the next iteration, so a finished or
released source never spins.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)

PREVIEW_INTERVAL = 1 / 30


class RenderLoop:
    def __init__(self, interval: float = PREVIEW_INTERVAL, sleep=asyncio.sleep):
        self.interval = interval
        self._sleep = sleep
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self) -> None:
        """Ask the running loop to exit before its next iteration."""
        self._stopped = True

    async def run_preview(self, source, render, on_frame, meter=None) -> int:
        """Composite the latest source frame every tick until stopped.

        Args:
            source: Capture source with read(), ended and paused.
            render: Callable frame -> composited RGB array.
            on_frame: Callable (composited, audio_level) for display.
            meter: Optional LevelMeter sampled once per tick.

        Returns:
            Number of frames handed to on_frame.
        """
        self._stopped = False
        shown = 0
        while not self._stopped and not source.ended:
            if source.paused:
                await source.wait_resumed()
                continue
            frame = source.read()
            level = meter.sample() if meter is not None else 0.0
            if frame is not None:
                on_frame(render(frame), level)
                shown += 1
            await self._sleep(self.interval)
        return shown

    async def run_export(self, source, render, sink) -> int:
        """Feed every remaining source frame through render into sink.

        sink is an async callable; awaiting it is the export's backpressure.

        Returns:
            Number of frames written to sink.
        """
        self._stopped = False
        written = 0
        while not self._stopped:
            if source.ended:
                break
            if source.paused:
                await source.wait_resumed()
                continue
            frame = source.read()
            if frame is None:
                break
            await sink(render(frame))
            written += 1
            await asyncio.sleep(0)
        logger.debug("Export loop finished after %d frames", written)
        return written
