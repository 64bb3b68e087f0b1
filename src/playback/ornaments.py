"""
Ornament and grace-note expansion.

Two expansions share the OrnamentGroup representation:

- expand_for_matching: replaces an ornamented note with its constituent
  notes, separated by sub-tick offsets, so keyboard input is matched in the
  right order. Grace notes are nudged just ahead of their main note.
- expand_for_audio: regroups those sub-notes by their source note and lays
  them out over real musical time for synthesized playback.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from src.backend.logging_utils import get_logger
from src.playback.notes import ExtractedNote, note_name
from src.score.model import Accidental, Ornament, OrnamentType, Pitch, SourceNote

logger = get_logger(__name__)

# Spacing between ornament sub-notes for matching order (far below one tick).
ORNAMENT_NOTE_OFFSET = 0.00001
# Spacing that places grace notes ahead of their main note.
GRACE_NOTE_OFFSET = 0.0001
# Mordent sub-note length in whole notes, independent of the parent note value.
MORDENT_NOTE_DURATION = 1 / 16

DIATONIC_NOTES = [0, 2, 4, 5, 7, 9, 11]


class OrnamentKind(str, Enum):
    TURN = "turn"
    MORDENT = "mordent"
    TRILL = "trill"

    @property
    def flag(self) -> str:
        return f"is_{self.value}_note"


@dataclass
class OrnamentGroup:
    """Constituent notes of one ornamented source note."""
    source_note: SourceNote
    kind: OrnamentKind
    notes: List[ExtractedNote] = field(default_factory=list)


@dataclass(frozen=True)
class TimedNote:
    """A note placed on the audio time axis (whole-note units).

    Grace notes carry grace_main_timestamp/grace_offset instead of a duration:
    they are laid out in real time ending at their main note.
    """
    note: ExtractedNote
    timestamp: float
    duration: Optional[float]
    grace_main_timestamp: Optional[float] = None
    grace_offset: int = 0

    @property
    def is_grace(self) -> bool:
        return self.grace_main_timestamp is not None


def diatonic_offset(pitch: Optional[Pitch], direction: int) -> int:
    """Semitones to the adjacent scale step above (direction > 0) or below."""
    default = 2 if direction > 0 else -2
    if pitch is None or pitch.fundamental_note is None:
        return default
    if pitch.fundamental_note not in DIATONIC_NOTES:
        return default
    current = pitch.half_tone
    octave = current // 12
    index = DIATONIC_NOTES.index(pitch.fundamental_note)
    adjacent_index = (index + 1) % 7 if direction > 0 else (index + 6) % 7
    adjacent = octave * 12 + DIATONIC_NOTES[adjacent_index]
    # B->C wraps up an octave, C->B wraps down.
    if direction > 0 and adjacent <= current:
        adjacent += 12
    elif direction < 0 and adjacent >= current:
        adjacent -= 12
    return adjacent - current


def _is_explicit(accidental: Optional[Accidental]) -> bool:
    return accidental is not None and accidental != Accidental.NONE


def auxiliary_pitches(main_midi: int, ornament: Ornament, pitch: Optional[Pitch]) -> Tuple[int, int]:
    """Return (upper, lower) MIDI neighbours for an ornament."""
    if _is_explicit(ornament.accidental_above):
        upper = main_midi + (1 if ornament.accidental_above == Accidental.FLAT else 2)
    else:
        upper = main_midi + diatonic_offset(pitch, 1)
    if _is_explicit(ornament.accidental_below):
        lower = main_midi - (2 if ornament.accidental_below == Accidental.FLAT else 1)
    else:
        lower = main_midi + diatonic_offset(pitch, -1)
    return upper, lower


def ornament_sequence(
    main_midi: int, ornament: Ornament, pitch: Optional[Pitch]
) -> Optional[Tuple[List[int], OrnamentKind]]:
    upper, lower = auxiliary_pitches(main_midi, ornament, pitch)
    main = main_midi
    if ornament.type == OrnamentType.TURN:
        return [upper, main, lower, main], OrnamentKind.TURN
    if ornament.type == OrnamentType.INVERTED_TURN:
        return [lower, main, upper, main], OrnamentKind.TURN
    if ornament.type == OrnamentType.DELAYED_TURN:
        return [main, upper, main, lower, main], OrnamentKind.TURN
    if ornament.type == OrnamentType.DELAYED_INVERTED_TURN:
        return [main, lower, main, upper, main], OrnamentKind.TURN
    if ornament.type == OrnamentType.MORDENT:
        return [main, lower, main], OrnamentKind.MORDENT
    if ornament.type == OrnamentType.INVERTED_MORDENT:
        return [main, upper, main], OrnamentKind.MORDENT
    if ornament.type == OrnamentType.TRILL:
        return [main, upper, main, upper], OrnamentKind.TRILL
    return None


def build_ornament_group(note: ExtractedNote) -> Optional[OrnamentGroup]:
    """Expand one extracted note into its ornament group, or None if plain."""
    ornament = note.voice_entry.ornament if note.voice_entry is not None else None
    if ornament is None:
        return None
    info = ornament_sequence(note.midi_number, ornament, note.source_note.pitch)
    if info is None:
        return None
    sequence, kind = info
    if any(midi < 0 or midi > 127 for midi in sequence):
        raise ValueError(f"ornament on {note.note_name} leaves the MIDI range: {sequence}")
    group = OrnamentGroup(source_note=note.source_note, kind=kind)
    last = len(sequence) - 1
    for i, midi in enumerate(sequence):
        sub_note = dataclasses.replace(
            note,
            midi_number=midi,
            note_name=note_name(midi),
            timestamp=note.timestamp + i * ORNAMENT_NOTE_OFFSET,
            # Only the final sub-note highlights the written notehead.
            notehead_index=note.notehead_index if i == last else -1,
            **{kind.flag: True},
        )
        group.notes.append(sub_note)
    return group


def adjust_grace_timestamps(notes: Sequence[ExtractedNote]) -> List[ExtractedNote]:
    """Shift grace notes just ahead of their main note, first grace earliest."""
    grace_by_timestamp: Dict[float, List[int]] = {}
    for position, note in enumerate(notes):
        if note.is_grace:
            grace_by_timestamp.setdefault(note.timestamp, []).append(position)
    adjusted = list(notes)
    for timestamp, positions in grace_by_timestamp.items():
        count = len(positions)
        for i, position in enumerate(positions):
            adjusted[position] = dataclasses.replace(
                adjusted[position],
                timestamp=timestamp - (count - i) * GRACE_NOTE_OFFSET,
            )
    return adjusted


def expand_for_matching(notes: Sequence[ExtractedNote]) -> List[ExtractedNote]:
    """Replace ornamented notes by their sub-notes, ordered for input matching."""
    expanded: List[ExtractedNote] = []
    for note in notes:
        try:
            group = build_ornament_group(note)
        except (ValueError, IndexError, TypeError) as exc:
            logger.warning(
                "ornament_expansion_failed key=%s error=%s", note.fingering_key, exc
            )
            group = None
        if group is None:
            expanded.append(note)
        else:
            expanded.extend(group.notes)
    return expanded


def group_ornament_notes(notes: Sequence[ExtractedNote]) -> List[OrnamentGroup]:
    """Regroup ornament sub-notes by the source note they were expanded from."""
    groups: Dict[int, OrnamentGroup] = {}
    for note in notes:
        if not note.is_ornament_note:
            continue
        key = id(note.source_note)
        group = groups.get(key)
        if group is None:
            if note.is_trill_note:
                kind = OrnamentKind.TRILL
            elif note.is_turn_note:
                kind = OrnamentKind.TURN
            else:
                kind = OrnamentKind.MORDENT
            group = OrnamentGroup(source_note=note.source_note, kind=kind)
            groups[key] = group
        group.notes.append(note)
    return list(groups.values())


def expand_for_audio(notes: Sequence[ExtractedNote]) -> List[TimedNote]:
    """Lay out one measure occurrence's notes on a musically correct time axis."""
    result: List[TimedNote] = []
    grace_group: List[ExtractedNote] = []

    def flush_grace_group() -> None:
        if not grace_group:
            return
        count = len(grace_group)
        main_timestamp = grace_group[-1].timestamp + GRACE_NOTE_OFFSET
        for i, grace in enumerate(grace_group):
            # The last grace note ends exactly where the main note starts.
            result.append(
                TimedNote(
                    note=grace,
                    timestamp=grace.timestamp,
                    duration=None,
                    grace_main_timestamp=main_timestamp,
                    grace_offset=count - i,
                )
            )
        grace_group.clear()

    for note in notes:
        if note.is_ornament_note:
            flush_grace_group()
        elif note.is_grace:
            grace_group.append(note)
        else:
            flush_grace_group()
            result.append(TimedNote(note=note, timestamp=note.timestamp, duration=note.length))
    flush_grace_group()

    for group in group_ornament_notes(notes):
        base = group.notes[0].timestamp
        if group.kind in {OrnamentKind.TRILL, OrnamentKind.TURN}:
            step = group.source_note.length / len(group.notes)
        else:
            step = MORDENT_NOTE_DURATION
        for i, sub_note in enumerate(group.notes):
            result.append(TimedNote(note=sub_note, timestamp=base + i * step, duration=step))

    result.sort(key=lambda timed: timed.timestamp)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("expand_for_audio notes=%s timed=%s", len(notes), len(result))
    return result
