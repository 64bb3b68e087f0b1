from __future__ import annotations

import unittest

import pytest

from src.playback.repeats import build_playback_sequence
from src.playback.sequence import extract_notes_from_score
from tests.score_builders import entry, measure, score, simple_measure, src_note


def _order(measures):
    return [item.source_measure_index for item in build_playback_sequence(measures)]


class RepeatResolutionTests(unittest.TestCase):
    def test_plain_score_plays_in_storage_order(self) -> None:
        measures = [simple_measure(i, 60 + i) for i in range(3)]
        self.assertEqual(_order(measures), [0, 1, 2])

    def test_simple_repeat_plays_section_twice(self) -> None:
        measures = [
            simple_measure(0, 60, start_repeat=True),
            simple_measure(1, 62),
            simple_measure(2, 64),
            simple_measure(3, 65, end_repeat=True),
        ]
        self.assertEqual(_order(measures), [0, 1, 2, 3, 0, 1, 2, 3])

    def test_volta_endings_select_measure_per_pass(self) -> None:
        measures = [
            simple_measure(0, 60, start_repeat=True),
            simple_measure(1, 62),
            simple_measure(2, 64, endings=[1], end_repeat=True),
            simple_measure(3, 65, endings=[2]),
            simple_measure(4, 67),
        ]
        self.assertEqual(_order(measures), [0, 1, 2, 0, 1, 3, 4])

    def test_consecutive_repeat_sections_are_independent(self) -> None:
        measures = [
            simple_measure(0, 60, start_repeat=True),
            simple_measure(1, 62, end_repeat=True),
            simple_measure(2, 64, start_repeat=True),
            simple_measure(3, 65, end_repeat=True),
        ]
        self.assertEqual(_order(measures), [0, 1, 0, 1, 2, 3, 2, 3])

    def test_back_jump_without_start_returns_to_beginning(self) -> None:
        measures = [
            simple_measure(0, 60),
            simple_measure(1, 62, end_repeat=True),
            simple_measure(2, 64),
        ]
        self.assertEqual(_order(measures), [0, 1, 0, 1, 2])

    def test_playback_indices_are_sequential(self) -> None:
        measures = [
            simple_measure(0, 60, start_repeat=True),
            simple_measure(1, 62, end_repeat=True),
        ]
        sequence = build_playback_sequence(measures)
        self.assertEqual([item.playback_index for item in sequence], [0, 1, 2, 3])


class PlaybackSequenceTests(unittest.TestCase):
    def _repeated_score(self):
        return score(
            [
                measure(0, [entry(0.0, src_note(60)), entry(0.5, src_note(64))], start_repeat=True),
                simple_measure(1, 62),
                simple_measure(2, 64),
                simple_measure(3, 65, end_repeat=True),
            ]
        )

    def test_repeated_score_yields_eight_occurrences(self) -> None:
        result = extract_notes_from_score(self._repeated_score())
        self.assertEqual(
            [e.source_measure_index for e in result.entries], [0, 1, 2, 3, 0, 1, 2, 3]
        )
        self.assertEqual(result.total_measures, 4)
        self.assertEqual(result.title, "Etude")
        self.assertEqual(result.composer, "Czerny")

    def test_occurrences_hold_independent_note_state(self) -> None:
        result = extract_notes_from_score(self._repeated_score())
        first, repeat = result.entries[0], result.entries[4]
        first.notes[0].played = True
        self.assertFalse(repeat.notes[0].played)
        self.assertIsNot(first.notes[0], repeat.notes[0])

    def test_timestamps_follow_playback_index(self) -> None:
        result = extract_notes_from_score(self._repeated_score())
        repeat = result.entries[4]
        self.assertEqual(repeat.playback_index, 4)
        self.assertEqual(
            [note.timestamp for note in repeat.notes], [pytest.approx(4.0), pytest.approx(4.5)]
        )
        self.assertTrue(all(note.source_measure_index == 0 for note in repeat.notes))
        self.assertTrue(all(note.measure_index == 0 for note in repeat.notes))

    def test_empty_measure_keeps_its_occurrence(self) -> None:
        result = extract_notes_from_score(
            score([simple_measure(0, 60), measure(1, [entry(0.0, src_note(0, cue=True))]), simple_measure(2, 62)])
        )
        self.assertEqual([e.source_measure_index for e in result.entries], [0, 1, 2])
        self.assertEqual(result.entries[1].notes, [])

    def test_missing_score_gives_empty_result(self) -> None:
        result = extract_notes_from_score(None)
        self.assertEqual(result.entries, [])
        self.assertEqual(result.sequence, [])
        self.assertEqual(result.total_measures, 0)

    def test_score_without_measures_gives_empty_result(self) -> None:
        result = extract_notes_from_score(score([]))
        self.assertEqual(result.entries, [])
