from .notes import ExtractedNote, fingering_key, note_name
from .repeats import SequenceItem, build_playback_sequence
from .scheduler import AudioScheduler, Instrument, PlaybackSchedule, build_schedule
from .sequence import PlaybackResult, PlaybackSequenceEntry, extract_notes_from_score
from .validation import NoteValidator, ValidationListener

__all__ = [
    "AudioScheduler",
    "ExtractedNote",
    "Instrument",
    "NoteValidator",
    "PlaybackResult",
    "PlaybackSchedule",
    "PlaybackSequenceEntry",
    "SequenceItem",
    "ValidationListener",
    "build_playback_sequence",
    "build_schedule",
    "extract_notes_from_score",
    "fingering_key",
    "note_name",
]
