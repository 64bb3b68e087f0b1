from __future__ import annotations

"""Playable note records produced by extraction."""

from dataclasses import dataclass, field
from typing import Optional

from src.score.model import SourceNote, VoiceEntry

NOTE_NAMES = "C C# D D# E F F# G G# A A# B".split(" ")


def note_name(midi_number: int) -> str:
    """Return the scientific pitch name for a MIDI number (60 -> C4)."""
    return f"{NOTE_NAMES[midi_number % 12]}{midi_number // 12 - 1}"


def fingering_key(measure_number: int, staff_index: int, voice_index: int, sequential_index: int) -> str:
    return f"{measure_number}:{staff_index}:{voice_index}:{sequential_index}"


@dataclass
class ExtractedNote:
    midi_number: int
    note_name: str
    timestamp: float
    measure_index: int
    staff_index: int
    voice_index: int
    fingering_key: str
    length: float
    source_note: SourceNote = field(repr=False, compare=False)
    voice_entry: Optional[VoiceEntry] = field(default=None, repr=False, compare=False)
    source_measure_index: Optional[int] = None
    is_grace: bool = False
    is_tie_continuation: bool = False
    is_turn_note: bool = False
    is_mordent_note: bool = False
    is_trill_note: bool = False
    notehead_index: int = 0
    notehead_count: int = 1
    active: bool = False
    played: bool = False

    @property
    def is_ornament_note(self) -> bool:
        return self.is_turn_note or self.is_mordent_note or self.is_trill_note
