import asyncio

import pytest

from fakes import FakeRecognitionEngine, FakeSynthesisEngine, run
from jarvis.errors import (
    PermissionDenied,
    RecognitionError,
    RecognitionUnsupported,
    SynthesisError,
)
from jarvis.speech_input import SpeechInputSession
from jarvis.speech_output import SpeechEvent, SpeechOutputSession


class ExplodingRecognition(FakeRecognitionEngine):
    def start(self, language, emit):
        raise RuntimeError("already started")


class ExplodingSynthesis(FakeSynthesisEngine):
    def speak(self, text, language, rate, pitch, emit):
        raise RuntimeError("no voices")


class NeverReady(FakeRecognitionEngine):
    async def ready(self):
        await asyncio.sleep(10)
        return True


# --- speech input ---

def test_begin_asks_permission_every_time():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)

    async def scenario():
        await session.begin("en-US")
        session.end()
        await session.begin("fr-FR")

    run(scenario())
    assert engine.permission_requests == 2
    assert engine.language == "fr-FR"
    assert session.is_active()


def test_denied_permission_raises_and_stays_inactive():
    engine = FakeRecognitionEngine(grant=False)
    session = SpeechInputSession(engine)

    with pytest.raises(PermissionDenied, match="Microphone access required"):
        run(session.begin("en-US"))
    assert not session.is_active()
    assert engine.starts == 0


def test_engine_start_failure_is_recognition_error():
    session = SpeechInputSession(ExplodingRecognition())

    with pytest.raises(RecognitionError):
        run(session.begin("en-US"))
    assert not session.is_active()


@pytest.mark.parametrize("engine", [FakeRecognitionEngine(supported=False), NeverReady()])
def test_wait_ready_reports_unsupported(engine):
    session = SpeechInputSession(engine)
    with pytest.raises(RecognitionUnsupported):
        run(session.wait_ready(0.05))


def test_results_reach_the_utterance_callback():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)
    heard = []
    session.on_utterance = heard.append

    run(session.begin("en-US"))
    engine.hear("open GitHub")

    assert heard == ["open GitHub"]


def test_events_after_end_are_ignored():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)
    heard, stopped = [], []
    session.on_utterance = heard.append
    session.on_stopped = stopped.append

    run(session.begin("en-US"))
    session.end()
    engine.hear("late words")
    engine.finish()

    assert heard == []
    assert stopped == []
    assert not engine.active


def test_end_is_idempotent():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)

    session.end()
    run(session.begin("en-US"))
    session.end()
    session.end()

    assert not session.is_active()


def test_engine_end_and_error_are_reported_once():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)
    stopped = []
    session.on_stopped = stopped.append

    run(session.begin("en-US"))
    engine.fail("network")
    engine.finish()

    assert stopped == ["network"]
    assert not session.is_active()


def test_auto_stop_fires_while_active():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)
    fired = []

    async def scenario():
        await session.begin("en-US")
        session.arm_auto_stop(0.01, lambda: fired.append(True))
        await asyncio.sleep(0.05)

    run(scenario())
    assert fired == [True]


def test_auto_stop_cancelled_by_end():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)
    fired = []

    async def scenario():
        await session.begin("en-US")
        session.arm_auto_stop(0.01, lambda: fired.append(True))
        session.end()
        await asyncio.sleep(0.05)

    run(scenario())
    assert fired == []


def test_auto_stop_from_previous_run_does_not_fire():
    engine = FakeRecognitionEngine()
    session = SpeechInputSession(engine)
    fired = []

    async def scenario():
        await session.begin("en-US")
        session.arm_auto_stop(0.01, lambda: fired.append("old"))
        engine.finish()
        await session.begin("en-US")
        await asyncio.sleep(0.05)

    run(scenario())
    assert fired == []
    assert session.is_active()


# --- speech output ---

def test_speak_forwards_lifecycle_events():
    engine = FakeSynthesisEngine()
    session = SpeechOutputSession(engine)
    events = []
    session.on_event = lambda event, detail: events.append((event, detail))

    session.speak("Hello", "en-GB")
    assert session.is_active()
    engine.finish()

    assert events == [(SpeechEvent.START, None), (SpeechEvent.END, None)]
    assert engine.languages == ["en-GB"]
    assert not session.is_active()


def test_new_utterance_cancels_the_current_one():
    engine = FakeSynthesisEngine()
    session = SpeechOutputSession(engine)
    events = []
    session.on_event = lambda event, detail: events.append(event)

    session.speak("first", "en-US")
    stale_emit = engine._emit
    session.speak("second", "en-US")
    stale_emit("end", None)

    assert engine.cancels == 1
    assert engine.spoken == ["first", "second"]
    assert events == [SpeechEvent.START, SpeechEvent.START]
    assert session.is_active()


def test_stop_is_idempotent_and_silences_late_events():
    engine = FakeSynthesisEngine()
    session = SpeechOutputSession(engine)
    events = []
    session.on_event = lambda event, detail: events.append(event)

    session.stop()
    assert engine.cancels == 0

    session.speak("hello", "en-US")
    session.stop()
    session.stop()
    engine.finish()

    assert engine.cancels == 1
    assert events == [SpeechEvent.START]


def test_engine_refusal_is_synthesis_error():
    session = SpeechOutputSession(ExplodingSynthesis())

    with pytest.raises(SynthesisError):
        session.speak("hello", "en-US")
    assert not session.is_active()


def test_synthesis_wait_ready_reports_unsupported():
    session = SpeechOutputSession(FakeSynthesisEngine(supported=False))
    with pytest.raises(SynthesisError):
        run(session.wait_ready(0.05))
