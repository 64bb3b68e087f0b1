from .model import (
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

__all__ = [
    "Accidental",
    "Ornament",
    "OrnamentType",
    "Pitch",
    "RepetitionInstruction",
    "RepetitionType",
    "Score",
    "SourceMeasure",
    "SourceNote",
    "StaffEntry",
    "VerticalContainer",
    "VoiceEntry",
]
