"""Tests for the preview and export render loops."""

import asyncio

import numpy as np

from overlaycast.render_loop import RenderLoop


class _ListSource:
    """Serves a fixed number of frames, then reports ended."""

    def __init__(self, count):
        self.remaining = count
        self.ended = False
        self.paused = False
        self._resumed = asyncio.Event()
        self.reads = 0

    def read(self):
        self.reads += 1
        if self.remaining == 0:
            self.ended = True
            return None
        self.remaining -= 1
        return np.zeros((2, 2, 3), dtype=np.uint8)

    def pause(self):
        self.paused = True
        self._resumed.clear()

    def resume(self):
        self.paused = False
        self._resumed.set()

    async def wait_resumed(self):
        await self._resumed.wait()


class _Sink(list):
    """Async sink that keeps every frame."""

    async def __call__(self, frame):
        self.append(frame)


class TestRunExport:
    def test_writes_every_frame_then_stops(self):
        async def _exercise():
            source = _ListSource(7)
            sink = _Sink()
            written = await RenderLoop().run_export(source, lambda f: f + 1, sink)
            return source, sink, written

        source, sink, written = asyncio.run(_exercise())
        assert written == 7
        assert len(sink) == 7
        assert sink[0][0, 0, 0] == 1
        # One extra read detects the end; no spinning afterwards.
        assert source.reads == 8

    def test_waits_while_paused(self):
        async def _exercise():
            source = _ListSource(3)
            source.pause()
            sink = _Sink()
            task = asyncio.create_task(RenderLoop().run_export(source, lambda f: f, sink))
            for _ in range(5):
                await asyncio.sleep(0)
            assert sink == []
            source.resume()
            return await task

        assert asyncio.run(_exercise()) == 3

    def test_stop_ends_export(self):
        async def _exercise():
            source = _ListSource(1000)
            loop = RenderLoop()
            sink = []

            async def stop_after_two(frame):
                sink.append(frame)
                if len(sink) == 2:
                    loop.stop()

            return await loop.run_export(source, lambda f: f, stop_after_two)

        assert asyncio.run(_exercise()) == 2


class TestRunPreview:
    def test_hands_frames_with_level(self):
        class _Meter:
            def sample(self):
                return 0.5

        async def _exercise():
            source = _ListSource(3)
            shown = []
            count = await RenderLoop(interval=0).run_preview(
                source, lambda f: f, lambda frame, level: shown.append(level), meter=_Meter(),
            )
            return count, shown

        count, shown = asyncio.run(_exercise())
        assert count == 3
        assert shown == [0.5, 0.5, 0.5]

    def test_stop_ends_preview(self):
        async def _exercise():
            source = _ListSource(10_000)
            loop = RenderLoop(interval=0)
            task = asyncio.create_task(loop.run_preview(source, lambda f: f, lambda f, l: None))
            for _ in range(5):
                await asyncio.sleep(0)
            loop.stop()
            return await task

        shown = asyncio.run(_exercise())
        assert 0 < shown < 10_000
