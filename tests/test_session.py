"""
tests/test_session.py — BoardSession end-to-end: cursor in, phrase out.

The cursor uses alpha 1.0 so each frame lands exactly on its target, and
every tick gets an explicit timestamp. The proxy client is an AsyncMock.
"""

from __future__ import annotations

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

from pictovoice.core.config import BoardConfig, GazeConfig, PictoConfig
from pictovoice.core.constants import AvailabilityPhase, PhraseSource
from pictovoice.core.session import (
    ON_AVAILABILITY,
    ON_COMPOSING,
    ON_GAZE_CONNECTION,
    ON_PHRASE,
    ON_SELECTION,
    BoardSession,
)
from pictovoice.gaze.ingestor import Rejected
from pictovoice.llm.client import GenerateReply, ProbeReply, ProxyTimeout


def _fake_client() -> MagicMock:
    client = MagicMock()
    client.test_connection = AsyncMock(return_value=ProbeReply("connected"))
    client.generate = AsyncMock(return_value=GenerateReply("I need water and help.", "remote"))
    client.close = AsyncMock()
    return client


class _SessionCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self) -> None:
        self.client = _fake_client()
        self.speaker = MagicMock()
        self.session = BoardSession(
            PictoConfig(gaze=GazeConfig(smoothing_alpha=1.0)),
            client=self.client,
            speaker=self.speaker,
            clock=lambda: 0,
        )
        self.events: dict = {}
        for name in (ON_SELECTION, ON_COMPOSING, ON_PHRASE, ON_AVAILABILITY, ON_GAZE_CONNECTION):
            self.events[name] = []
            self.session.subscribe(name, self.events[name].append)
        self.t = 0

    async def asyncTearDown(self) -> None:
        await self.session.shutdown()

    def dwell_on(self, key: str) -> None:
        x, y = self.session.board.tile_for(key).centre
        self.session.handle_pointer(x, y)
        self.session.tick_frame(self.t)
        self.session.tick_frame(self.t + 2500)
        self.t += 3000

    async def select(self, *keys: str):
        for key in keys:
            self.dwell_on(key)
        return await self.session.composition


class TestSelectionToPhrase(_SessionCase):

    async def test_local_phrase_when_remote_never_checked(self) -> None:
        result = await self.select("self", "water", "help")
        self.assertEqual(result.phrase, "Please, I need a glass of water.")
        self.assertIs(result.source, PhraseSource.LOCAL)
        self.client.generate.assert_not_called()
        self.speaker.speak.assert_called_once_with("Please, I need a glass of water.")

        self.assertEqual(self.events[ON_COMPOSING], [{"concepts": ["self", "water", "help"]}])
        phrase = self.events[ON_PHRASE][-1]
        self.assertEqual(phrase["source"], "local")
        self.assertEqual(phrase["reason"], "remote unavailable")

    async def test_selection_events(self) -> None:
        self.dwell_on("water")
        self.dwell_on("self")
        last = self.events[ON_SELECTION][-1]
        self.assertEqual(last["items"], ["water", "self"])
        self.assertEqual(last["labels"][0], "Glass of water")
        self.assertFalse(last["full"])

    async def test_remote_phrase_after_successful_check(self) -> None:
        self.assertTrue(await self.session.monitor.check_now())
        self.assertEqual(self.events[ON_AVAILABILITY][-1]["phase"], "available")

        result = await self.select("self", "water", "help")
        self.assertIs(result.source, PhraseSource.REMOTE)
        self.assertEqual(result.phrase, "I need water and help.")
        args = self.client.generate.await_args
        self.assertEqual(args.args[0], ("self", "water", "help"))
        self.speaker.speak.assert_called_once_with("I need water and help.")

    async def test_generation_timeout_falls_back(self) -> None:
        await self.session.monitor.check_now()
        self.client.generate.side_effect = ProxyTimeout("POST timed out")
        result = await self.select("you", "help", "tv")
        self.assertEqual(result.phrase, "Could you help me, please?")
        self.assertIs(result.source, PhraseSource.LOCAL)
        self.assertIs(self.session.monitor.state.phase, AvailabilityPhase.UNAVAILABLE)

    async def test_selection_cleared_after_phrase(self) -> None:
        await self.select("self", "tv", "no")
        self.assertEqual(len(self.session.selection), 0)
        self.assertEqual(self.events[ON_SELECTION][-1]["items"], [])
        self.dwell_on("water")
        self.assertEqual(self.session.selection.items, ("water",))

    async def test_selection_kept_when_configured(self) -> None:
        await self.session.shutdown()
        session = BoardSession(
            PictoConfig(
                gaze=GazeConfig(smoothing_alpha=1.0),
                board=BoardConfig(clear_after_phrase=False),
            ),
            client=_fake_client(),
            clock=lambda: 0,
        )
        self.session = session
        await self.select("self", "tv", "no")
        self.assertEqual(session.selection.items, ("self", "tv", "no"))
        self.dwell_on("water")
        self.assertEqual(session.selection.items, ("self", "tv", "no"))

    async def test_speech_failure_still_clears_selection(self) -> None:
        self.speaker.speak.side_effect = RuntimeError("audio device gone")
        result = await self.select("self", "water", "help")
        self.assertEqual(result.phrase, "Please, I need a glass of water.")
        self.assertIs(self.session.last_result, result)
        self.assertEqual(self.session.selection.items, ())
        self.dwell_on("food")
        self.assertEqual(self.session.selection.items, ("food",))

    async def test_full_selection_published_before_composing(self) -> None:
        order: list = []
        self.session.subscribe(ON_SELECTION, lambda d: order.append(("selection", d["items"])))
        self.session.subscribe(ON_COMPOSING, lambda d: order.append(("composing", d["concepts"])))
        await self.select("you", "help", "tv")
        self.assertEqual(order[:4], [
            ("selection", ["you"]),
            ("selection", ["you", "help"]),
            ("selection", ["you", "help", "tv"]),
            ("composing", ["you", "help", "tv"]),
        ])
        self.assertTrue(self.events[ON_SELECTION][2]["full"])
        self.assertEqual(len(self.events[ON_COMPOSING]), 1)

    async def test_late_result_after_clear_is_ignored(self) -> None:
        await self.session.monitor.check_now()
        release = asyncio.Event()

        async def _slow_generate(concepts, timeout_s):
            await release.wait()
            return GenerateReply("Too late.", "remote")

        self.client.generate.side_effect = _slow_generate
        for key in ("self", "water", "help"):
            self.dwell_on(key)
        task = self.session.composition
        await asyncio.sleep(0)

        self.session.clear()
        self.assertEqual(self.events[ON_SELECTION][-1]["items"], [])
        release.set()
        self.assertIsNone(await task)
        self.assertIsNone(self.session.last_result)
        self.speaker.speak.assert_not_called()
        self.assertEqual(self.events[ON_PHRASE], [])

    async def test_remove_then_refill(self) -> None:
        self.dwell_on("self")
        self.dwell_on("water")
        self.assertEqual(self.session.remove(0), "self")
        result = await self.select("you", "food")
        self.assertEqual(self.events[ON_COMPOSING][-1]["concepts"], ["water", "you", "food"])
        self.assertEqual(result.phrase, "Could you bring me a glass of water, please?")


class TestCursorInputs(_SessionCase):

    async def test_gaze_replaces_pointer_while_connected(self) -> None:
        self.session.set_gaze_connected(True)
        self.assertEqual(self.events[ON_GAZE_CONNECTION], [{"connected": True}])
        self.assertFalse(self.session.handle_pointer(10, 10))

        x, y = self.session.board.tile_for("water").centre
        outcome = self.session.handle_gaze_message({"x": x, "y": y})
        self.assertNotIsInstance(outcome, Rejected)
        self.session.tick_frame(0)
        self.session.tick_frame(2500)
        self.assertEqual(self.session.selection.items, ("water",))

    async def test_invalid_gaze_frames_do_not_move_cursor(self) -> None:
        self.session.set_gaze_connected(True)
        before = self.session.cursor.target
        self.session.handle_gaze_message({"x": 10, "y": 10, "valid": False})
        self.assertIsInstance(self.session.handle_gaze_message("garbage"), Rejected)
        self.assertEqual(self.session.cursor.target, before)

    async def test_hidden_cursor_never_selects(self) -> None:
        self.session.tick_frame(0)
        self.session.tick_frame(10_000)
        self.assertEqual(len(self.session.selection), 0)

    async def test_gaze_disconnect_cancels_dwell(self) -> None:
        self.session.set_gaze_connected(True)
        x, y = self.session.board.tile_for("self").centre
        self.session.handle_gaze_message({"x": x, "y": y})
        self.session.tick_frame(0)
        self.assertIsNotNone(self.session.dwell.active)

        self.session.set_gaze_connected(False)
        self.assertIsNone(self.session.dwell.active)
        self.assertIsNone(self.session.tick_dwell(5000))

    async def test_failing_subscriber_does_not_break_pipeline(self) -> None:
        def _boom(data):
            raise RuntimeError("ui gone")

        self.session.subscribe(ON_SELECTION, _boom)
        self.dwell_on("tv")
        self.assertEqual(self.session.selection.items, ("tv",))
        self.assertEqual(self.events[ON_SELECTION][-1]["items"], ["tv"])

    async def test_resize_relayouts_board(self) -> None:
        self.session.resize(640, 400)
        self.assertEqual(self.session.board.tile_for("you").width, 136)
        self.dwell_on("you")
        self.assertEqual(self.session.selection.items, ("you",))

    async def test_dwell_duration_change(self) -> None:
        self.session.set_dwell_ms(1000)
        x, y = self.session.board.tile_for("yes").centre
        self.session.handle_pointer(x, y)
        self.session.tick_frame(0)
        self.assertEqual(self.session.tick_dwell(1000), "yes")


if __name__ == "__main__":
    unittest.main()
