"""MIDI file readers, timeline analysis, a playback engine and a synthesizer output device."""

__version__ = "0.8.8"

__all__ = ["events", "smf", "mids", "devinit", "timeline", "player", "fluidout", "cli"]