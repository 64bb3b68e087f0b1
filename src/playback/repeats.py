from __future__ import annotations

"""Repeat and volta resolution into performance order."""

from dataclasses import dataclass
from typing import List, Sequence

from src.score.model import RepetitionType, SourceMeasure


@dataclass(frozen=True)
class SequenceItem:
    source_measure_index: int
    playback_index: int


def build_playback_sequence(measures: Sequence[SourceMeasure]) -> List[SequenceItem]:
    """Walk measures in storage order, following two-pass repeats and endings.

    A StartLine records the jump target; a BackJumpLine on the first pass
    jumps back and starts pass 2; an Ending measure is played only on the
    passes it lists. After the second-ending measure of a section the pass
    counter resets so later repeat sections are independent.
    """
    sequence: List[SequenceItem] = []
    current_pass = 1
    repeat_start_index = 0
    i = 0
    while i < len(measures):
        measure = measures[i]

        if measure.has_first_instruction(RepetitionType.START_LINE):
            # Must be computed before repeat_start_index moves.
            returning_from_jump = current_pass == 2 and i == repeat_start_index
            repeat_start_index = i
            if not returning_from_jump:
                current_pass = 1

        ending_indices = measure.ending_indices()
        if not ending_indices or current_pass in ending_indices:
            sequence.append(SequenceItem(source_measure_index=i, playback_index=len(sequence)))

        if measure.has_last_instruction(RepetitionType.BACK_JUMP_LINE) and current_pass == 1:
            current_pass = 2
            i = repeat_start_index
            continue

        if current_pass == 2 and 2 in ending_indices:
            current_pass = 1
            repeat_start_index = i + 1

        i += 1
    return sequence
