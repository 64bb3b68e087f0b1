from __future__ import annotations

import asyncio

import pytest

from src.backend.config import Settings
from src.playback.scheduler import (
    NOTE_OFF,
    NOTE_ON,
    AudioScheduler,
    build_schedule,
    timestamp_to_ms,
)
from src.playback.sequence import extract_notes_from_score
from src.score.model import Ornament, OrnamentType
from tests.score_builders import entry, measure, score, simple_measure, src_note


class _FakeInstrument:
    def __init__(self):
        self.events = []
        self.release_count = 0

    def note_on(self, pitch, velocity):
        self.events.append(("on", pitch, velocity))

    def note_off(self, pitch):
        self.events.append(("off", pitch))

    def release_all(self):
        self.release_count += 1


def _schedule_for(measures, bpm=120.0, **kwargs):
    result = extract_notes_from_score(score(measures))
    return build_schedule(result.entries, measures, bpm, **kwargs)


def _events(schedule):
    return [(round(e.time_ms, 3), e.kind, e.pitch) for e in schedule.events]


def test_timestamp_to_ms_uses_quarter_note_beats():
    assert timestamp_to_ms(0.25, 120) == pytest.approx(500.0)
    assert timestamp_to_ms(1.0, 60) == pytest.approx(4000.0)


def test_schedule_places_measures_by_cumulative_duration():
    measures = [
        simple_measure(0, 60, duration=0.75),
        simple_measure(1, 62),
    ]
    schedule = _schedule_for(measures)
    assert _events(schedule) == [
        (0.0, NOTE_ON, 60),
        (500.0, NOTE_OFF, 60),
        (1500.0, NOTE_ON, 62),
        (2000.0, NOTE_OFF, 62),
    ]
    assert schedule.end_ms == pytest.approx(2000.0)


def test_repeated_measures_are_scheduled_again():
    measures = [
        simple_measure(0, 60, start_repeat=True),
        simple_measure(1, 62, end_repeat=True),
    ]
    schedule = _schedule_for(measures)
    note_ons = [(round(e.time_ms), e.pitch) for e in schedule.events if e.kind == NOTE_ON]
    assert note_ons == [(0, 60), (2000, 62), (4000, 60), (6000, 62)]


def test_grace_note_ends_where_main_note_starts():
    measures = [
        measure(
            0,
            [
                entry(0.25, src_note(62, 0.0), grace=True),
                entry(0.25, src_note(60)),
            ],
        )
    ]
    schedule = _schedule_for(measures, grace_note_duration_s=0.08)
    grace_on = next(e for e in schedule.events if e.kind == NOTE_ON and e.pitch == 62)
    grace_off = next(e for e in schedule.events if e.kind == NOTE_OFF and e.pitch == 62)
    main_on = next(e for e in schedule.events if e.kind == NOTE_ON and e.pitch == 60)
    assert main_on.time_ms == pytest.approx(500.0)
    assert grace_on.time_ms == pytest.approx(500.0 - 80.0)
    assert grace_off.time_ms == pytest.approx(500.0)


def test_tie_continuation_only_releases():
    measures = [
        simple_measure(0, 60),
        measure(1, [entry(0.0, src_note(60, tie="stop"))]),
    ]
    schedule = _schedule_for(measures)
    kinds = [(e.kind, e.pitch) for e in schedule.events]
    assert kinds.count((NOTE_ON, 60)) == 1
    assert kinds.count((NOTE_OFF, 60)) == 2


def test_turn_is_spread_over_the_written_note():
    measures = [
        measure(0, [entry(0.0, src_note(63, 0.25, fundamental=4), ornament=Ornament(OrnamentType.TURN))])
    ]
    schedule = _schedule_for(measures)
    note_ons = [(round(e.time_ms, 1), e.pitch) for e in schedule.events if e.kind == NOTE_ON]
    assert note_ons == [(0.0, 65), (125.0, 63), (250.0, 62), (375.0, 63)]


def test_mordent_uses_sixteenth_notes():
    measures = [
        measure(0, [entry(0.0, src_note(60, 0.5, fundamental=0), ornament=Ornament(OrnamentType.MORDENT))])
    ]
    schedule = _schedule_for(measures)
    note_ons = [(round(e.time_ms, 1), e.pitch) for e in schedule.events if e.kind == NOTE_ON]
    assert note_ons == [(0.0, 60), (125.0, 59), (250.0, 60)]


def test_scheduler_plays_to_completion_and_notifies():
    async def _run():
        instrument = _FakeInstrument()
        finished = asyncio.Event()
        scheduler = AudioScheduler(
            instrument,
            velocity=0.5,
            end_padding_ms=0,
            on_playback_end=finished.set,
        )
        s = score([simple_measure(0, 60, tempo=6000.0), simple_measure(1, 62)])
        result = extract_notes_from_score(s)
        scheduler.play(result.entries, s)
        assert scheduler.is_playing
        await asyncio.wait_for(finished.wait(), timeout=2.0)
        return instrument, scheduler

    instrument, scheduler = asyncio.run(_run())
    assert not scheduler.is_playing
    assert ("on", 60, 0.5) in instrument.events
    assert ("off", 62) in instrument.events


def test_stop_cancels_every_pending_dispatch():
    async def _run():
        instrument = _FakeInstrument()
        scheduler = AudioScheduler(instrument)
        s = score([simple_measure(0, 60), simple_measure(1, 62)])
        result = extract_notes_from_score(s)
        scheduler.play(result.entries, s)
        assert scheduler.pending_count > 0
        scheduler.stop()
        await asyncio.sleep(0.05)
        return instrument, scheduler

    instrument, scheduler = asyncio.run(_run())
    assert scheduler.pending_count == 0
    assert not scheduler.is_playing
    assert instrument.release_count == 1
    # Only the dispatch at t=0 could have been due, and it was cancelled too.
    assert instrument.events == []


def test_toggle_and_restart_never_overlap():
    async def _run():
        instrument = _FakeInstrument()
        scheduler = AudioScheduler(instrument)
        s = score([simple_measure(0, 60)])
        entries = extract_notes_from_score(s).entries
        started = scheduler.toggle_playback(entries, s)
        first_pending = scheduler.pending_count
        scheduler.play(entries, s)
        restarted_pending = scheduler.pending_count
        stopped = scheduler.toggle_playback(entries, s)
        return instrument, started, stopped, first_pending, restarted_pending

    instrument, started, stopped, first_pending, restarted_pending = asyncio.run(_run())
    assert started is True
    assert stopped is False
    assert first_pending == restarted_pending
    assert instrument.release_count == 2


def test_bpm_falls_back_to_configured_default(monkeypatch):
    monkeypatch.setenv("PLAYBACK_DEFAULT_BPM", "90")
    monkeypatch.setenv("PLAYBACK_VELOCITY", "0.9")
    settings = Settings.from_env()
    scheduler = AudioScheduler.from_settings(_FakeInstrument(), settings)
    assert scheduler.bpm_for(score([simple_measure(0, 60)])) == 90.0
    assert scheduler.bpm_for(score([simple_measure(0, 60, tempo=72.0)])) == 72.0


def test_pending_count_drops_as_dispatches_fire():
    async def _run():
        instrument = _FakeInstrument()
        scheduler = AudioScheduler(instrument)
        s = score([simple_measure(0, 60), simple_measure(1, 62)])
        scheduler.play(extract_notes_from_score(s).entries, s)
        before = scheduler.pending_count
        await asyncio.sleep(0.05)
        after = scheduler.pending_count
        scheduler.stop()
        return instrument, before, after, scheduler.pending_count

    instrument, before, after, stopped = asyncio.run(_run())
    # Note-on at 0, note-off at 500, the second measure and the end marker.
    assert before == 5
    assert after == before - 1
    assert instrument.events == [("on", 60, 0.7)]
    assert stopped == 0
