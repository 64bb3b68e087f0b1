from __future__ import annotations

"""Match live note events against the playback sequence."""

from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Set

from src.backend.config import Settings
from src.backend.logging_utils import get_logger
from src.playback.notes import ExtractedNote, note_name
from src.playback.sequence import PlaybackSequenceEntry

if TYPE_CHECKING:
    from src.practice.tracker import PracticeSessionTracker

logger = get_logger(__name__)

DEFAULT_TRAINING_REPEAT_COUNT = 3


class ValidationListener:
    """Receives highlight and progress updates. Override what you need."""

    def mark_played(self, note: ExtractedNote, played: bool) -> None:
        pass

    def mark_active(self, notes: Sequence[ExtractedNote]) -> None:
        pass

    def on_note_error(self, expected_name: str, played_name: str) -> None:
        pass

    def on_measure_completed(self, entry: PlaybackSequenceEntry) -> None:
        pass

    def on_score_completed(self) -> None:
        pass

    def on_training_progress(self, position: int, repeat_count: int, target: int) -> None:
        pass

    def on_training_complete(self) -> None:
        pass


class NoteValidator:
    """Walks the occurrences that contain notes, one expected chord at a time.

    Free mode advances after each completed occurrence. Training mode
    repeats an occurrence until it has been played cleanly
    ``training_repeat_count`` times.
    """

    def __init__(
        self,
        entries: Sequence[PlaybackSequenceEntry],
        *,
        listener: Optional[ValidationListener] = None,
        tracker: Optional["PracticeSessionTracker"] = None,
        training: bool = False,
        training_repeat_count: int = DEFAULT_TRAINING_REPEAT_COUNT,
    ) -> None:
        self._occurrences = [entry for entry in entries if entry.notes]
        self._listener = listener or ValidationListener()
        self._tracker = tracker
        self._training = training
        self._target = max(1, training_repeat_count)
        self._held: Set[int] = set()
        self._position = 0
        self._repeat_count = 0
        self._repetition_clean = True
        self._attempt_open = False
        self._completed = False
        self._refresh_active()

    @classmethod
    def from_settings(
        cls,
        entries: Sequence[PlaybackSequenceEntry],
        settings: Settings,
        **kwargs: Any,
    ) -> "NoteValidator":
        return cls(entries, training_repeat_count=settings.training_repeat_count, **kwargs)

    @property
    def training(self) -> bool:
        return self._training

    @property
    def position(self) -> int:
        return self._position

    @property
    def repeat_count(self) -> int:
        return self._repeat_count

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def held_pitches(self) -> Set[int]:
        return set(self._held)

    @property
    def current_entry(self) -> Optional[PlaybackSequenceEntry]:
        if self._completed or self._position >= len(self._occurrences):
            return None
        return self._occurrences[self._position]

    def expected_notes(self) -> List[ExtractedNote]:
        """Unplayed notes sharing the earliest unplayed timestamp."""
        entry = self.current_entry
        if entry is None:
            return []
        pending = [note for note in entry.notes if not note.played]
        if not pending:
            return []
        earliest = min(note.timestamp for note in pending)
        return [note for note in pending if note.timestamp == earliest]

    def set_training_mode(self, enabled: bool) -> None:
        self._training = enabled
        self.reset()

    def reset(self) -> None:
        for entry in self._occurrences:
            for note in entry.notes:
                if note.played:
                    note.played = False
                    self._listener.mark_played(note, False)
                note.active = False
        self._position = 0
        self._repeat_count = 0
        self._repetition_clean = True
        self._attempt_open = False
        self._completed = False
        self._refresh_active()

    def jump_to_measure(self, position: int) -> bool:
        """Move to another occurrence, dropping current progress.

        The target starts fresh, even when it was already played or the
        run had completed.
        """
        if position < 0 or position >= len(self._occurrences):
            return False
        self._reset_occurrence(reset_repeat_count=True)
        self._position = position
        self._completed = False
        self._reset_occurrence(reset_repeat_count=True)
        self._attempt_open = False
        self._refresh_active()
        self._listener.on_training_progress(self._position, self._repeat_count, self._target)
        return True

    def on_note_released(self, pitch: int) -> None:
        self._held.discard(pitch)

    def on_note_played(self, pitch: int) -> bool:
        """Validate one note-on. Returns True when it matched an expected note."""
        self._held.add(pitch)
        entry = self.current_entry
        expected = self.expected_notes()
        if entry is None or not expected:
            return False
        self._open_attempt(entry)
        timestamp = expected[0].timestamp
        matches = [note for note in expected if note.midi_number == pitch]
        if not matches:
            self._repetition_clean = False
            if self._tracker is not None:
                self._tracker.record_wrong_note()
            self._listener.on_note_error(expected[0].note_name, note_name(pitch))
            return False
        for note in matches:
            note.played = True
            note.active = False
            self._listener.mark_played(note, True)
        logger.debug("note_matched pitch=%s timestamp=%s", pitch, timestamp)
        if all(note.played for note in entry.notes):
            self._complete_occurrence(entry)
        else:
            self._refresh_active()
        return True

    def _open_attempt(self, entry: PlaybackSequenceEntry) -> None:
        if self._attempt_open:
            return
        self._attempt_open = True
        if self._tracker is not None:
            self._tracker.start_measure_attempt(entry.source_measure_index)

    def _close_attempt(self) -> None:
        if not self._attempt_open:
            return
        self._attempt_open = False
        if self._tracker is not None:
            self._tracker.end_measure_attempt()

    def _complete_occurrence(self, entry: PlaybackSequenceEntry) -> None:
        self._close_attempt()
        self._listener.on_measure_completed(entry)
        is_last = self._position + 1 >= len(self._occurrences)
        if not self._training:
            if is_last:
                self._finish()
            else:
                self._position += 1
                self._refresh_active()
            return

        if self._repetition_clean:
            self._repeat_count += 1
        self._listener.on_training_progress(self._position, self._repeat_count, self._target)
        if self._repeat_count < self._target:
            self._reset_occurrence(reset_repeat_count=False)
            self._refresh_active()
            return
        if is_last:
            self._finish()
            self._listener.on_training_complete()
            return
        self._reset_occurrence(reset_repeat_count=True)
        self._position += 1
        self._refresh_active()
        self._listener.on_training_progress(self._position, self._repeat_count, self._target)

    def _finish(self) -> None:
        self._completed = True
        if self._tracker is not None:
            self._tracker.complete_playthrough()
        self._listener.on_score_completed()

    def _reset_occurrence(self, *, reset_repeat_count: bool) -> None:
        entry = self.current_entry
        if entry is not None:
            for note in entry.notes:
                if note.played:
                    note.played = False
                    self._listener.mark_played(note, False)
                note.active = False
        if reset_repeat_count:
            self._repeat_count = 0
        self._repetition_clean = True

    def _refresh_active(self) -> None:
        expected = self.expected_notes()
        for note in expected:
            note.active = True
        if expected:
            self._listener.mark_active(expected)
