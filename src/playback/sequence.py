from __future__ import annotations

"""Compose extraction and repeat resolution into the playback sequence."""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from src.backend.logging_utils import get_logger, summarize_payload
from src.playback.extraction import extract_notes_by_measure
from src.playback.notes import ExtractedNote
from src.playback.repeats import SequenceItem, build_playback_sequence
from src.score.model import Score

logger = get_logger(__name__)


@dataclass
class PlaybackSequenceEntry:
    """One occurrence of a source measure in performance order."""
    playback_index: int
    source_measure_index: int
    notes: List[ExtractedNote] = field(default_factory=list)


@dataclass
class PlaybackResult:
    entries: List[PlaybackSequenceEntry] = field(default_factory=list)
    sequence: List[SequenceItem] = field(default_factory=list)
    title: Optional[str] = None
    composer: Optional[str] = None
    total_measures: int = 0


def build_playback_entries(
    sequence: Sequence[SequenceItem],
    notes_by_measure: Dict[int, List[ExtractedNote]],
) -> List[PlaybackSequenceEntry]:
    """Give every occurrence its own copy of the measure's notes.

    Timestamps are re-based onto the playback index while keeping their
    offset inside the measure (grace and ornament nudges included).
    """
    entries: List[PlaybackSequenceEntry] = []
    for item in sequence:
        source_notes = notes_by_measure.get(item.source_measure_index, [])
        notes = [
            dataclasses.replace(
                note,
                timestamp=item.playback_index + (note.timestamp - note.measure_index),
                source_measure_index=item.source_measure_index,
                active=False,
                played=False,
            )
            for note in source_notes
        ]
        entries.append(
            PlaybackSequenceEntry(
                playback_index=item.playback_index,
                source_measure_index=item.source_measure_index,
                notes=notes,
            )
        )
    return entries


def extract_notes_from_score(score: Optional[Score]) -> PlaybackResult:
    """Build the repeat-resolved playback sequence for a score.

    An absent score yields an empty result rather than an error.
    """
    if score is None or not score.measures:
        return PlaybackResult()
    sequence = build_playback_sequence(score.measures)
    notes_by_measure = extract_notes_by_measure(score.measures)
    entries = build_playback_entries(sequence, notes_by_measure)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "extract_notes_from_score sequence=%s",
            summarize_payload([item.source_measure_index for item in sequence]),
        )
    return PlaybackResult(
        entries=entries,
        sequence=sequence,
        title=score.title,
        composer=score.composer,
        total_measures=len(score.measures),
    )
