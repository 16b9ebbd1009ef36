"""Output to a software synthesizer with a FluidSynth-like interface.

The synthesizer itself is reached through :class:`SynthBackend`. A
:class:`FluidOutput` turns the player's MIDI messages into backend calls. It
also keeps the settings used to create the synthesizer and a table of the
presets in the loaded soundfonts.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable

from .events import MidiOutDevice

logger = logging.getLogger(__name__)

CHORUS_MOD_SINE = 0
CHORUS_MOD_TRIANGLE = 1

_NO_LEVEL = 1e9 + 7
_PROGRAMS = 128

_INITIAL_CC = {11: 127, 7: 100, 129: 2}
_INITIAL_CC.update(dict.fromkeys((8, 10, 71, 72, 73, 74, 75, 76, 77, 78), 64))


@dataclass(frozen=True)
class SynthPreset:
    """A preset of a soundfont."""

    bank: int
    program: int
    name: str


class SynthBackend(ABC):
    """The synthesizer a :class:`FluidOutput` drives.

    Soundfonts form a stack: index 0 is the one loaded most recently.
    """

    @abstractmethod
    def noteon(self, ch: int, key: int, vel: int) -> None:
        """Start a note."""

    @abstractmethod
    def noteoff(self, ch: int, key: int) -> None:
        """Release a note."""

    @abstractmethod
    def cc(self, ch: int, ctrl: int, val: int) -> None:
        """Set a controller."""

    @abstractmethod
    def program_change(self, ch: int, prog: int) -> None:
        """Change the program of a channel."""

    @abstractmethod
    def pitch_bend(self, ch: int, val: int) -> None:
        """Set the 14-bit pitch bend of a channel."""

    @abstractmethod
    def pitch_wheel_sens(self, ch: int, val: int) -> None:
        """Set the pitch bend range of a channel in semitones."""

    @abstractmethod
    def sysex(self, data: bytes) -> None:
        """Process a system exclusive message without its F0/F7 framing."""

    @abstractmethod
    def all_notes_off(self, ch: int) -> None:
        """Release all notes of a channel."""

    @abstractmethod
    def system_reset(self) -> None:
        """Reset the whole synthesizer."""

    @abstractmethod
    def set_channel_type(self, ch: int, drum: bool) -> None:
        """Make a channel a drum or a melodic channel."""

    @abstractmethod
    def bank_select(self, ch: int, bank: int) -> None:
        """Select a bank for a channel."""

    @abstractmethod
    def channel_preset(self, ch: int) -> SynthPreset | None:
        """The preset a channel plays, if any."""

    @abstractmethod
    def sfload(self, path: str) -> None:
        """Load a soundfont on top of the stack."""

    @abstractmethod
    def soundfont_count(self) -> int:
        """Number of loaded soundfonts."""

    @abstractmethod
    def soundfont_presets(self, index: int) -> list[SynthPreset]:
        """Presets of the soundfont at a stack position."""

    @abstractmethod
    def active_voice_count(self) -> int:
        """Voices sounding right now."""

    @abstractmethod
    def polyphony(self) -> int:
        """Maximum number of voices."""

    @abstractmethod
    def reverb_on(self, enabled: bool) -> None:
        """Switch reverb on or off."""

    @abstractmethod
    def get_reverb(self) -> tuple[float, float, float, float]:
        """Reverb (room size, damping, width, level)."""

    @abstractmethod
    def set_reverb(self, room: float, damp: float, width: float, level: float) -> None:
        """Set reverb parameters."""

    @abstractmethod
    def chorus_on(self, enabled: bool) -> None:
        """Switch chorus on or off."""

    @abstractmethod
    def get_chorus(self) -> tuple[int, float, float, float, int]:
        """Chorus (voice count, level, speed, depth, modulation type)."""

    @abstractmethod
    def set_chorus(self, feedback: int, level: float, rate: float, depth: float, kind: int) -> None:
        """Set chorus parameters."""

    @abstractmethod
    def close(self) -> None:
        """Release the synthesizer and its audio output."""

    def output_level(self) -> float:
        """Output level in dB; backends that cannot measure it keep the default."""
        return _NO_LEVEL


SynthFactory = Callable[[dict[str, Any]], SynthBackend]


class FluidOutput(MidiOutDevice):
    """A :class:`MidiOutDevice` that plays through a :class:`SynthBackend`.

    ``synth_factory`` builds the backend from the current settings; it
    signals failure by raising :class:`OSError`.
    """

    def __init__(self, synth_factory: SynthFactory):
        self._factory = synth_factory
        self.settings: dict[str, Any] = {}
        self._synth: SynthBackend | None = None
        self._banks: list[tuple[int, str]] = []
        self._presets: dict[int, list[str]] = {}

    @property
    def running(self) -> bool:
        return self._synth is not None

    def device_init(self) -> None:
        try:
            self._synth = self._factory(dict(self.settings))
        except OSError as exc:
            logger.error("Error creating fluidsynth instance: %s", exc)
            self._synth = None
            return
        self._banks = []
        self._presets = {}

    def device_deinit(self, fresh_settings: bool = False) -> None:
        if self._synth is None:
            return
        self._synth.close()
        self._synth = None
        self._banks = []
        self._presets = {}
        if fresh_settings:
            self.settings = {}

    def basic_message(self, type: int, p1: int, p2: int) -> None:
        synth = self._synth
        if synth is None:
            return
        ch = type & 0x0F
        kind = type & 0xF0
        if kind == 0x80:
            synth.noteoff(ch, p1)
        elif kind == 0x90:
            if p2:
                synth.noteon(ch, p1, p2)
            else:
                synth.noteoff(ch, p1)
        elif kind == 0xB0:
            synth.cc(ch, p1, p2)
        elif kind == 0xC0:
            synth.program_change(ch, p1)
        elif kind == 0xE0:
            synth.pitch_bend(ch, (p1 | p2 << 7) & 0x3FFF)

    def extended_message(self, data: bytes) -> None:
        if self._synth is None:
            return
        self._synth.sysex(bytes(data)[1:-1])

    def rpn_message(self, ch: int, type: int, val: int) -> None:
        if self._synth is None:
            return
        if type == 0:
            self._synth.pitch_wheel_sens(ch, val >> 7)
            return
        self._synth.cc(ch, 0x64, type & 0x7F)
        self._synth.cc(ch, 0x65, type >> 7)
        self._synth.cc(ch, 0x06, val >> 7)
        self._synth.cc(ch, 0x26, val & 0x7F)

    def nrpn_message(self, ch: int, type: int, val: int) -> None:
        if self._synth is None:
            return
        self._synth.cc(ch, 0x62, type & 0x7F)
        self._synth.cc(ch, 0x63, type >> 7)
        self._synth.cc(ch, 0x06, val >> 7)
        self._synth.cc(ch, 0x26, val & 0x7F)

    def panic(self, ch: int) -> None:
        if self._synth is None:
            return
        self._synth.cc(ch, 64, 0)
        self._synth.pitch_bend(ch, 8192)
        self._synth.all_notes_off(ch)

    def reset(self, ch: int) -> None:
        synth = self._synth
        if synth is None:
            return
        if ch == 0xFF:
            synth.system_reset()
            return
        self.panic(ch)
        for ctrl in range(128):
            synth.cc(ch, ctrl, 0)
        synth.cc(ch, 0, 127 if ch == 9 else 0)
        synth.cc(ch, 7, 100)
        synth.cc(ch, 8, 64)
        synth.cc(ch, 10, 64)
        synth.cc(ch, 11, 127)
        synth.pitch_wheel_sens(ch, 2)

    def on_mapped(self, ch: int, refcnt: int) -> None:
        pass

    def on_unmapped(self, ch: int, refcnt: int) -> None:
        pass

    def select_preset(self, ch: int, bank: int, prog: int) -> bool:
        if self._synth is None:
            return True
        self._synth.set_channel_type(ch, bank == 128)
        self._synth.bank_select(ch, bank)
        self._synth.program_change(ch, prog)
        return True

    def bank_list(self) -> list[tuple[int, str]]:
        return list(self._banks)

    def presets(self, bank: int) -> list[tuple[int, str]]:
        names = self._presets.get(bank)
        if names is None:
            return []
        return [(program, name) for program, name in enumerate(names) if name]

    def preset_name(self, bank: int, preset: int) -> str:
        names = self._presets.get(bank)
        if names is None or not 0 <= preset < len(names):
            return ""
        return names[preset]

    def channel_preset(self, ch: int) -> tuple[int, int, str] | None:
        """(bank, program, name) of a channel; (-1, -1, "---") if it has none."""
        if self._synth is None:
            return None
        preset = self._synth.channel_preset(ch)
        if preset is None:
            return (-1, -1, "---")
        return (preset.bank, preset.program, preset.name)

    def initial_cc_value(self, cc: int, ch: int) -> int:
        return _INITIAL_CC.get(cc, 0)

    def set_option(self, name: str, value: Any) -> None:
        """Set a synthesizer setting; it takes effect on the next device_init."""
        self.settings[name] = value

    def load_soundfont(self, path: str) -> None:
        if self._synth is not None:
            self._synth.sfload(path)
        self._update_preset_list()

    def soundfont_count(self) -> int:
        return self._synth.soundfont_count() if self._synth is not None else 0

    def _update_preset_list(self) -> None:
        banks: list[tuple[int, str]] = []
        table: dict[int, list[str]] = {}
        for index in reversed(range(self.soundfont_count())):
            for preset in self._synth.soundfont_presets(index):
                if not banks or banks[-1][0] != preset.bank:
                    banks.append((preset.bank, ""))
                names = table.setdefault(preset.bank, [""] * _PROGRAMS)
                names[preset.program] = preset.name or " "
        self._banks = sorted(set(banks))
        self._presets = table

    def polyphony(self) -> int:
        return self._synth.active_voice_count() if self._synth is not None else 0

    def max_polyphony(self) -> int:
        return self._synth.polyphony() if self._synth is not None else 0

    @property
    def output_level(self) -> float:
        return self._synth.output_level() if self._synth is not None else _NO_LEVEL

    def set_gain(self, gain: float) -> None:
        self.settings["synth.gain"] = gain

    def reverb(self) -> tuple[float, float, float, float] | None:
        """(room, damp, width, level), or None when the synthesizer is not running."""
        return self._synth.get_reverb() if self._synth is not None else None

    def set_reverb(self, enabled: bool, room: float, damp: float, width: float, level: float) -> None:
        if self._synth is None:
            return
        self._synth.reverb_on(bool(enabled))
        self._synth.set_reverb(room, damp, width, level)

    def chorus(self) -> tuple[int, float, float, float, int] | None:
        """(feedback, level, rate, depth, kind), or None when not running."""
        return self._synth.get_chorus() if self._synth is not None else None

    def set_chorus(self, enabled: bool, feedback: int, level: float, rate: float,
                   depth: float, kind: int) -> None:
        if self._synth is None:
            return
        self._synth.chorus_on(bool(enabled))
        self._synth.set_chorus(feedback, level, rate, depth, kind)


def audio_options(drivers: list[str], windows: bool) -> list[dict[str, Any]]:
    """Descriptions of the synthesizer's user options.

    Each entry has ``category``, ``description``, ``key``, ``kind`` ("enum",
    "int" or "bool") and ``default``; enums carry ``choices``, integers
    ``minimum`` and ``maximum``.
    """
    preferred = "waveout" if windows else "pulseaudio"
    default_driver = -1
    for index, driver in enumerate(drivers):
        if driver == preferred:
            default_driver = index

    def enum(description, key, choices, default):
        return {"category": "Audio", "description": description, "key": key,
                "kind": "enum", "choices": list(choices), "default": default}

    def integer(description, key, minimum, maximum, default):
        return {"category": "Audio", "description": description, "key": key,
                "kind": "int", "minimum": minimum, "maximum": maximum, "default": default}

    return [
        enum("Audio Driver", "FluidSynth/AudioDriver", drivers, default_driver),
        integer("Audio Buffer Size", "FluidSynth/BufSize", 64, 8192, 512 if windows else 64),
        integer("Audio Buffer Count", "FluidSynth/BufCnt", 2, 64, 8 if windows else 16),
        enum("Sample Format", "FluidSynth/SampleFormat", ["16bits", "float"], 0),
        integer("Sample Rate", "FluidSynth/SampleRate", 8000, 96000, 48000),
        integer("Max Polyphony", "FluidSynth/Polyphony", 1, 65535, 256),
        integer("CPU Cores", "FluidSynth/Threads", 1, 256, 1),
        {"category": "Audio", "description": "Auto Bank Select Mode", "key": "FluidSynth/AutoBS",
         "kind": "bool", "default": True},
        enum("Bank Select Mode", "FluidSynth/BankSelect", ["GM", "GS", "XG", "MMA"], 1),
    ]