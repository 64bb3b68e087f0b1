from __future__ import annotations

"""Per-measure extraction of playable notes from the score graph."""

from typing import Dict, List, Sequence, Tuple

from src.playback.notes import ExtractedNote, fingering_key, note_name
from src.playback.ornaments import adjust_grace_timestamps, expand_for_matching
from src.score.model import SourceMeasure, SourceNote


def _is_playable(note: SourceNote) -> bool:
    # Cue notes are editorial guides, not meant to be played.
    return note.pitch is not None and not note.is_rest and not note.is_cue


def extract_measure_notes(measure: SourceMeasure) -> List[ExtractedNote]:
    """Extract, grace-adjust, ornament-expand and order one measure's notes."""
    notes: List[ExtractedNote] = []
    counters: Dict[Tuple[int, int], int] = {}
    for container in measure.containers:
        for staff_index, staff_entry in enumerate(container.staff_entries):
            if staff_entry is None:
                continue
            for voice_entry in staff_entry.voice_entries:
                voice_index = voice_entry.voice_id - 1
                pitched_count = sum(1 for n in voice_entry.notes if n.pitch is not None)
                for notehead_index, source in enumerate(voice_entry.notes):
                    if not _is_playable(source):
                        continue
                    counter_key = (staff_index, voice_index)
                    sequential_index = counters.get(counter_key, 0)
                    counters[counter_key] = sequential_index + 1
                    midi_number = source.pitch.half_tone + 12
                    notes.append(
                        ExtractedNote(
                            midi_number=midi_number,
                            note_name=note_name(midi_number),
                            timestamp=measure.index + voice_entry.timestamp,
                            measure_index=measure.index,
                            staff_index=staff_index,
                            voice_index=voice_index,
                            fingering_key=fingering_key(
                                measure.measure_number, staff_index, voice_index, sequential_index
                            ),
                            length=source.length,
                            source_note=source,
                            voice_entry=voice_entry,
                            source_measure_index=measure.index,
                            is_grace=voice_entry.is_grace,
                            is_tie_continuation=source.is_tie_continuation,
                            notehead_index=notehead_index,
                            notehead_count=pitched_count,
                        )
                    )
    notes = adjust_grace_timestamps(notes)
    notes = expand_for_matching(notes)
    # Stable sort keeps document order among simultaneous notes.
    notes.sort(key=lambda n: n.timestamp)
    return notes


def extract_notes_by_measure(measures: Sequence[SourceMeasure]) -> Dict[int, List[ExtractedNote]]:
    """Map source measure index -> ordered notes, omitting measures with none."""
    notes_by_measure: Dict[int, List[ExtractedNote]] = {}
    for measure in measures:
        notes = extract_measure_notes(measure)
        if notes:
            notes_by_measure[measure.index] = notes
    return notes_by_measure
