from __future__ import annotations

"""Build the in-memory score graph from an already-parsed music21 score."""

from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from music21 import bar, chord, converter, expressions, note, spanner, stream, tempo

from src.backend.logging_utils import get_logger
from src.score.model import (
    Accidental,
    Ornament,
    OrnamentType,
    Pitch,
    RepetitionInstruction,
    RepetitionType,
    Score,
    SourceMeasure,
    SourceNote,
    StaffEntry,
    VerticalContainer,
    VoiceEntry,
)

logger = get_logger(__name__)

_STEP_SEMITONES = {"C": 0, "D": 2, "E": 4, "F": 5, "G": 7, "A": 9, "B": 11}

_ACCIDENTALS = {
    "sharp": Accidental.SHARP,
    "flat": Accidental.FLAT,
    "natural": Accidental.NATURAL,
    "double-sharp": Accidental.DOUBLE_SHARP,
    "double-flat": Accidental.DOUBLE_FLAT,
}


def load_score(path: str | Path) -> Score:
    """Parse a MusicXML (.xml or .mxl) file with music21 and adapt it."""
    parsed = converter.parse(str(path))
    return score_from_music21(parsed)


def score_from_music21(parsed: stream.Score) -> Score:
    """Convert a music21 score into SourceMeasures.

    Each part is treated as one staff (piano scores arrive as two PartStaffs).
    Measures are aligned across parts by position.
    """
    parts = list(parsed.parts) if isinstance(parsed, stream.Score) else [parsed]
    measures_by_part = [list(part.getElementsByClass(stream.Measure)) for part in parts]
    measure_count = max((len(measures) for measures in measures_by_part), default=0)
    endings = _collect_endings(parsed, measures_by_part[0]) if parts else {}

    source_measures: List[SourceMeasure] = []
    for index in range(measure_count):
        column = [
            measures[index] if index < len(measures) else None
            for measures in measures_by_part
        ]
        source_measures.append(_build_measure(index, column, endings.get(index)))

    metadata = parsed.metadata
    title = metadata.title if metadata is not None else None
    composer = metadata.composer if metadata is not None else None
    logger.debug(
        "score_from_music21 parts=%s measures=%s title=%s",
        len(parts),
        len(source_measures),
        title,
    )
    return Score(title=title, composer=composer, measures=source_measures)


def _collect_endings(
    root: stream.Stream, measures: Sequence[stream.Measure]
) -> Dict[int, frozenset]:
    """Map measure index -> ending numbers, attached to each bracket's first measure.

    The MusicXML importer stores spanners on the score rather than the part,
    so the whole tree is searched; brackets over other parts are ignored.
    """
    index_by_id = {id(measure): idx for idx, measure in enumerate(measures)}
    endings: Dict[int, frozenset] = {}
    for bracket in root.recurse().getElementsByClass(spanner.RepeatBracket):
        spanned = bracket.getSpannedElements()
        if not spanned:
            continue
        first_index = index_by_id.get(id(spanned[0]))
        if first_index is None:
            continue
        numbers = frozenset(int(n) for n in (bracket.numberRange or []))
        if numbers:
            endings[first_index] = numbers
    return endings


def _build_measure(
    index: int,
    column: Sequence[Optional[stream.Measure]],
    ending_numbers: Optional[frozenset],
) -> SourceMeasure:
    present = [m for m in column if m is not None]
    reference = present[0] if present else None
    measure_number = reference.number if reference is not None else index + 1

    first: List[RepetitionInstruction] = []
    last: List[RepetitionInstruction] = []
    if reference is not None:
        left = reference.leftBarline
        if isinstance(left, bar.Repeat) and left.direction == "start":
            first.append(RepetitionInstruction(RepetitionType.START_LINE))
        right = reference.rightBarline
        if isinstance(right, bar.Repeat) and right.direction == "end":
            last.append(RepetitionInstruction(RepetitionType.BACK_JUMP_LINE))
    if ending_numbers:
        first.append(RepetitionInstruction(RepetitionType.ENDING, ending_numbers))

    return SourceMeasure(
        index=index,
        measure_number=measure_number,
        duration=_measure_duration(present),
        tempo_bpm=_measure_bpm(present) if index == 0 else None,
        first_instructions=first,
        last_instructions=last,
        containers=_build_containers(column),
    )


def _measure_duration(measures: Sequence[stream.Measure]) -> float:
    quarter_length = 0.0
    for measure in measures:
        quarter_length = max(quarter_length, float(measure.duration.quarterLength))
    if quarter_length <= 0.0 and measures:
        quarter_length = float(measures[0].barDuration.quarterLength)
    return quarter_length / 4.0 if quarter_length > 0.0 else 1.0


def _measure_bpm(measures: Sequence[stream.Measure]) -> Optional[float]:
    for measure in measures:
        for mark in measure.recurse().getElementsByClass(tempo.MetronomeMark):
            bpm = _metronome_bpm(mark)
            if bpm is not None:
                return bpm
    return None


def _metronome_bpm(mark: tempo.MetronomeMark) -> Optional[float]:
    if hasattr(mark, "getQuarterBPM"):
        bpm = mark.getQuarterBPM()
        if bpm is not None:
            return float(bpm)
    if mark.number is not None:
        return float(mark.number)
    return None


def _build_containers(column: Sequence[Optional[stream.Measure]]) -> List[VerticalContainer]:
    staff_count = len(column)
    by_timestamp: Dict[float, VerticalContainer] = {}
    for staff_index, measure in enumerate(column):
        if measure is None:
            continue
        for voice_id, voice in _voices(measure):
            for element in voice.notesAndRests:
                entry = _voice_entry(element, measure, voice_id)
                container = by_timestamp.get(entry.timestamp)
                if container is None:
                    container = VerticalContainer(
                        timestamp=entry.timestamp,
                        staff_entries=[None] * staff_count,
                    )
                    by_timestamp[entry.timestamp] = container
                staff_entry = container.staff_entries[staff_index]
                if staff_entry is None:
                    staff_entry = StaffEntry()
                    container.staff_entries[staff_index] = staff_entry
                staff_entry.voice_entries.append(entry)
    return [by_timestamp[ts] for ts in sorted(by_timestamp)]


def _voices(measure: stream.Measure) -> List[Tuple[int, stream.Stream]]:
    voices = list(measure.voices)
    if not voices:
        return [(1, measure)]
    result = []
    for position, voice in enumerate(voices):
        raw_id = str(voice.id)
        voice_id = int(raw_id) if raw_id.isdigit() and int(raw_id) < 100 else position + 1
        result.append((voice_id, voice))
    return result


def _voice_entry(element: note.GeneralNote, measure: stream.Measure, voice_id: int) -> VoiceEntry:
    offset = float(element.getOffsetInHierarchy(measure))
    length = float(element.duration.quarterLength) / 4.0
    is_cue = getattr(element.style, "noteSize", None) == "cue"
    if element.isRest:
        notes = [SourceNote(pitch=None, length=length, is_rest=True)]
    elif isinstance(element, chord.Chord):
        notes = [
            _source_note(member, length, is_cue, fallback_tie=element.tie)
            for member in element.notes
        ]
    else:
        notes = [_source_note(element, length, is_cue)]
    return VoiceEntry(
        timestamp=offset / 4.0,
        notes=notes,
        voice_id=voice_id,
        is_grace=bool(element.duration.isGrace),
        ornament=_ornament(element),
    )


def _source_note(element: note.Note, length: float, is_cue: bool, fallback_tie=None) -> SourceNote:
    pitch = element.pitch
    tie = element.tie if element.tie is not None else fallback_tie
    return SourceNote(
        pitch=Pitch(
            half_tone=int(pitch.midi) - 12,
            fundamental_note=_STEP_SEMITONES.get(pitch.step),
        ),
        length=length,
        is_cue=is_cue,
        tie_type=tie.type if tie is not None else None,
    )


def _ornament(element: note.GeneralNote) -> Optional[Ornament]:
    for expression in getattr(element, "expressions", []):
        if isinstance(expression, expressions.InvertedTurn):
            delayed = bool(getattr(expression, "isDelayed", False))
            kind = OrnamentType.DELAYED_INVERTED_TURN if delayed else OrnamentType.INVERTED_TURN
        elif isinstance(expression, expressions.Turn):
            delayed = bool(getattr(expression, "isDelayed", False))
            kind = OrnamentType.DELAYED_TURN if delayed else OrnamentType.TURN
        elif isinstance(expression, expressions.InvertedMordent):
            kind = OrnamentType.INVERTED_MORDENT
        elif isinstance(expression, expressions.Mordent):
            kind = OrnamentType.MORDENT
        elif isinstance(expression, expressions.Trill):
            kind = OrnamentType.TRILL
        else:
            continue
        return Ornament(
            type=kind,
            accidental_above=_accidental(expression, "upperAccidental"),
            accidental_below=_accidental(expression, "lowerAccidental"),
        )
    return None


def _accidental(expression: expressions.Expression, attribute: str) -> Optional[Accidental]:
    accidental = getattr(expression, attribute, None)
    if accidental is None:
        return None
    return _ACCIDENTALS.get(accidental.name)
