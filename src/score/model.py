from __future__ import annotations

"""In-memory score graph consumed by note extraction and repeat resolution."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import FrozenSet, List, Optional, Sequence


class RepetitionType(IntEnum):
    START_LINE = 0
    FORWARD_JUMP = 1
    BACK_JUMP_LINE = 2
    ENDING = 3
    DA_CAPO = 4
    DAL_SEGNO = 5
    FINE = 6
    TO_CODA = 7
    DAL_SEGNO_AL_FINE = 8
    DA_CAPO_AL_FINE = 9
    DAL_SEGNO_AL_CODA = 10
    DA_CAPO_AL_CODA = 11
    CODA = 12
    SEGNO = 13
    NONE = 14


class OrnamentType(IntEnum):
    TRILL = 0
    TURN = 1
    INVERTED_TURN = 2
    DELAYED_TURN = 3
    DELAYED_INVERTED_TURN = 4
    MORDENT = 5
    INVERTED_MORDENT = 6


class Accidental(IntEnum):
    SHARP = 0
    FLAT = 1
    NONE = 2
    NATURAL = 3
    DOUBLE_SHARP = 4
    DOUBLE_FLAT = 5


@dataclass(frozen=True)
class RepetitionInstruction:
    type: RepetitionType
    ending_indices: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class Ornament:
    type: OrnamentType
    accidental_above: Optional[Accidental] = None
    accidental_below: Optional[Accidental] = None


@dataclass(frozen=True)
class Pitch:
    """Pitch as a semitone offset from C0 (MIDI number minus 12).

    fundamental_note is the semitone offset of the natural note name
    (C=0, D=2, E=4, F=5, G=7, A=9, B=11), ignoring accidentals.
    """
    half_tone: int
    fundamental_note: Optional[int] = None


# Compared by identity: ornament sub-notes are regrouped by their source note.
@dataclass(eq=False)
class SourceNote:
    pitch: Optional[Pitch]
    length: float
    is_rest: bool = False
    is_cue: bool = False
    tie_type: Optional[str] = None

    @property
    def is_tie_continuation(self) -> bool:
        return self.tie_type in {"continue", "stop"}


@dataclass(eq=False)
class VoiceEntry:
    timestamp: float
    notes: List[SourceNote] = field(default_factory=list)
    voice_id: int = 1
    is_grace: bool = False
    ornament: Optional[Ornament] = None


@dataclass
class StaffEntry:
    voice_entries: List[VoiceEntry] = field(default_factory=list)


@dataclass
class VerticalContainer:
    """All staff entries sounding at one timestamp, indexed by staff."""
    timestamp: float
    staff_entries: List[Optional[StaffEntry]] = field(default_factory=list)


@dataclass
class SourceMeasure:
    index: int
    measure_number: int
    duration: float = 1.0
    tempo_bpm: Optional[float] = None
    first_instructions: List[RepetitionInstruction] = field(default_factory=list)
    last_instructions: List[RepetitionInstruction] = field(default_factory=list)
    containers: List[VerticalContainer] = field(default_factory=list)

    def has_first_instruction(self, kind: RepetitionType) -> bool:
        return any(ri.type == kind for ri in self.first_instructions)

    def has_last_instruction(self, kind: RepetitionType) -> bool:
        return any(ri.type == kind for ri in self.last_instructions)

    def ending_indices(self) -> FrozenSet[int]:
        for instruction in self.first_instructions:
            if instruction.type == RepetitionType.ENDING:
                return instruction.ending_indices
        return frozenset()


@dataclass
class Score:
    title: Optional[str]
    composer: Optional[str]
    measures: Sequence[SourceMeasure]

    @property
    def bpm(self) -> Optional[float]:
        if not self.measures:
            return None
        return self.measures[0].tempo_bpm
