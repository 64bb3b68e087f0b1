"""
Tempo-aware scheduling of note-on/note-off dispatches to an instrument.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import numpy as np

from src.backend.config import Settings
from src.backend.logging_utils import get_logger
from src.playback.ornaments import expand_for_audio
from src.playback.sequence import PlaybackSequenceEntry
from src.score.model import Score, SourceMeasure

logger = get_logger(__name__)

DEFAULT_BPM = 120.0
NOTE_ON = "note_on"
NOTE_OFF = "note_off"


class Instrument(Protocol):
    """Synthesizer collaborator receiving dispatches."""

    def note_on(self, pitch: int, velocity: float) -> None: ...

    def note_off(self, pitch: int) -> None: ...

    def release_all(self) -> None: ...


@dataclass(frozen=True)
class ScheduledEvent:
    time_ms: float
    kind: str
    pitch: int


@dataclass
class PlaybackSchedule:
    bpm: float
    events: List[ScheduledEvent] = field(default_factory=list)
    end_ms: float = 0.0


def timestamp_to_ms(timestamp: float, bpm: float) -> float:
    """Convert a whole-note position to milliseconds (quarter note = one beat)."""
    return timestamp * 4 * 60 / bpm * 1000


def measure_start_times(
    entries: Sequence[PlaybackSequenceEntry], measures: Sequence[SourceMeasure]
) -> np.ndarray:
    """Cumulative start of each occurrence, from its source measure's real duration."""
    durations = np.array(
        [
            measures[entry.source_measure_index].duration
            if entry.source_measure_index < len(measures)
            else 1.0
            for entry in entries
        ],
        dtype=float,
    )
    starts = np.zeros(len(entries), dtype=float)
    if len(entries) > 1:
        starts[1:] = np.cumsum(durations)[:-1]
    return starts


def build_schedule(
    entries: Sequence[PlaybackSequenceEntry],
    measures: Sequence[SourceMeasure],
    bpm: float,
    *,
    grace_note_duration_s: float = 0.08,
) -> PlaybackSchedule:
    """Compute every dispatch of a playback run, sorted by time."""
    schedule = PlaybackSchedule(bpm=bpm)
    grace_ms = grace_note_duration_s * 1000
    starts = measure_start_times(entries, measures)
    for entry, measure_start in zip(entries, starts):
        # Note timestamps are based on the playback index, not real time.
        measure_offset = float(measure_start) - entry.playback_index
        for timed in expand_for_audio(entry.notes):
            if timed.is_grace:
                main_ms = timestamp_to_ms(measure_offset + timed.grace_main_timestamp, bpm)
                start_ms = max(0.0, main_ms - timed.grace_offset * grace_ms)
                duration_ms = grace_ms
            else:
                start_ms = timestamp_to_ms(measure_offset + timed.timestamp, bpm)
                duration_ms = timestamp_to_ms(timed.duration, bpm)
            pitch = timed.note.midi_number
            # A tie continuation is already sounding.
            if not timed.note.is_tie_continuation:
                schedule.events.append(ScheduledEvent(start_ms, NOTE_ON, pitch))
            schedule.events.append(ScheduledEvent(start_ms + duration_ms, NOTE_OFF, pitch))
            schedule.end_ms = max(schedule.end_ms, start_ms + duration_ms)
    schedule.events.sort(key=lambda event: event.time_ms)
    return schedule


class AudioScheduler:
    """Owns one playback run at a time and every timer it has scheduled."""

    def __init__(
        self,
        instrument: Instrument,
        *,
        velocity: float = 0.7,
        grace_note_duration_s: float = 0.08,
        end_padding_ms: float = 500.0,
        default_bpm: float = DEFAULT_BPM,
        on_playback_end: Optional[Callable[[], None]] = None,
    ) -> None:
        self._instrument = instrument
        self._velocity = velocity
        self._grace_note_duration_s = grace_note_duration_s
        self._end_padding_ms = end_padding_ms
        self._default_bpm = default_bpm
        self._on_playback_end = on_playback_end
        # Pending timers by token; each one removes itself when it fires.
        self._handles: Dict[int, asyncio.TimerHandle] = {}
        self._tokens = itertools.count()
        self._is_playing = False

    @classmethod
    def from_settings(
        cls,
        instrument: Instrument,
        settings: Settings,
        on_playback_end: Optional[Callable[[], None]] = None,
    ) -> "AudioScheduler":
        return cls(
            instrument,
            velocity=settings.playback_velocity,
            grace_note_duration_s=settings.grace_note_duration_seconds,
            end_padding_ms=settings.playback_end_padding_ms,
            default_bpm=settings.default_bpm,
            on_playback_end=on_playback_end,
        )

    @property
    def is_playing(self) -> bool:
        return self._is_playing

    @property
    def pending_count(self) -> int:
        return len(self._handles)

    def set_on_playback_end(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_playback_end = callback

    def bpm_for(self, score: Score) -> float:
        return score.bpm or self._default_bpm

    def play(self, entries: Sequence[PlaybackSequenceEntry], score: Score) -> PlaybackSchedule:
        """Start a run, stopping any run in progress first. Needs a running loop."""
        if self._is_playing:
            self.stop()
        loop = asyncio.get_running_loop()
        schedule = build_schedule(
            entries,
            score.measures,
            self.bpm_for(score),
            grace_note_duration_s=self._grace_note_duration_s,
        )
        for event in schedule.events:
            if event.kind == NOTE_ON:
                callback = self._dispatch_note_on
            else:
                callback = self._dispatch_note_off
            self._schedule(loop, event.time_ms, callback, event.pitch)
        done_ms = schedule.end_ms + self._end_padding_ms
        self._schedule(loop, done_ms, self._finish)
        self._is_playing = True
        logger.info(
            "playback_started bpm=%s occurrences=%s events=%s end_ms=%.1f",
            schedule.bpm,
            len(entries),
            len(schedule.events),
            schedule.end_ms,
        )
        return schedule

    def toggle_playback(self, entries: Sequence[PlaybackSequenceEntry], score: Score) -> bool:
        """Stop if playing, otherwise start. Returns True when a run started."""
        if self._is_playing:
            self.stop()
            return False
        self.play(entries, score)
        return True

    def stop(self) -> None:
        """Cancel every pending dispatch and release held sound."""
        cancelled = 0
        for handle in self._handles.values():
            if not handle.cancelled():
                handle.cancel()
                cancelled += 1
        self._handles = {}
        was_playing = self._is_playing
        self._is_playing = False
        self._instrument.release_all()
        if was_playing:
            logger.info("playback_stopped cancelled=%s", cancelled)

    def _schedule(
        self, loop: asyncio.AbstractEventLoop, at_ms: float, callback: Callable[..., None], *args: Any
    ) -> None:
        token = next(self._tokens)
        self._handles[token] = loop.call_later(at_ms / 1000, self._fire, token, callback, *args)

    def _fire(self, token: int, callback: Callable[..., None], *args: Any) -> None:
        self._handles.pop(token, None)
        callback(*args)

    def _dispatch_note_on(self, pitch: int) -> None:
        self._instrument.note_on(pitch, self._velocity)

    def _dispatch_note_off(self, pitch: int) -> None:
        self._instrument.note_off(pitch)

    def _finish(self) -> None:
        self._handles = {}
        self._is_playing = False
        logger.info("playback_finished")
        if self._on_playback_end is not None:
            self._on_playback_end()
