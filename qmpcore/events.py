"""MIDI event, track and file containers, and the device and reader interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class MidiEvent:
    """One event of a track.

    ``type`` is the status byte, ``p1``/``p2`` its parameters.  Meta events
    carry their meta type in ``p1``; meta and system exclusive events keep
    their payload in ``data``.  ``iid`` is the event's index in its track.
    """

    iid: int
    time: int
    type: int
    p1: int = 0
    p2: int = 0
    data: bytes = b""
    flags: int = 0

    def sort_key(self) -> tuple[int, int]:
        """Key that orders events by tick, then by their index in the track."""
        return (self.time, self.iid)


@dataclass
class MidiTrack:
    """A list of events in the order they were read."""

    events: list[MidiEvent] = field(default_factory=list)

    def append_event(self, event: MidiEvent) -> None:
        self.events.append(event)


@dataclass
class MidiFile:
    """A loaded MIDI file.

    ``std`` is the detected standard: 0 unknown, 1 GM1, 2 GM2, 3 GS, 4 XG.
    """

    tracks: list[MidiTrack] = field(default_factory=list)
    divs: int = 0
    title: bytes | None = None
    copyright: bytes | None = None
    std: int = 0
    valid: bool = True


class MidiOutDevice(ABC):
    """A destination for MIDI messages."""

    @abstractmethod
    def device_init(self) -> None:
        """Prepare the device for use."""

    @abstractmethod
    def device_deinit(self) -> None:
        """Release the device."""

    @abstractmethod
    def basic_message(self, type: int, p1: int, p2: int) -> None:
        """Send a channel message."""

    @abstractmethod
    def extended_message(self, data: bytes) -> None:
        """Send a system exclusive message."""

    @abstractmethod
    def rpn_message(self, ch: int, type: int, val: int) -> None:
        """Set a registered parameter (14-bit value)."""

    @abstractmethod
    def nrpn_message(self, ch: int, type: int, val: int) -> None:
        """Set a non-registered parameter (14-bit value)."""

    @abstractmethod
    def panic(self, ch: int) -> None:
        """Silence a channel."""

    @abstractmethod
    def reset(self, ch: int) -> None:
        """Reset a channel, or the whole device when ``ch`` is 0xFF."""

    @abstractmethod
    def on_mapped(self, ch: int, refcnt: int) -> None:
        """Called when a channel is routed to this device."""

    @abstractmethod
    def on_unmapped(self, ch: int, refcnt: int) -> None:
        """Called when a channel is routed away from this device."""

    @abstractmethod
    def select_preset(self, ch: int, bank: int, prog: int) -> bool:
        """Select a preset directly; return False if the device cannot."""

    @abstractmethod
    def bank_list(self) -> list[tuple[int, str]]:
        """Known banks as (bank number, name) pairs."""

    @abstractmethod
    def presets(self, bank: int) -> list[tuple[int, str]]:
        """Presets of a bank as (program, name) pairs."""

    @abstractmethod
    def preset_name(self, bank: int, preset: int) -> str:
        """Name of a preset, or an empty string."""

    @abstractmethod
    def channel_preset(self, ch: int) -> tuple[int, int, str] | None:
        """(bank, program, name) the device reports for a channel, or None."""

    @abstractmethod
    def initial_cc_value(self, cc: int, ch: int) -> int:
        """Value a controller holds after reset."""


class FileReader(ABC):
    """Reads a file into a :class:`MidiFile`."""

    @abstractmethod
    def read_file(self, path) -> MidiFile:
        """Read ``path``; the result's ``valid`` flag tells whether it worked."""

    @abstractmethod
    def discard_current_event(self) -> None:
        """Drop the event that was just read."""

    @abstractmethod
    def commit_event_change(self, event: MidiEvent) -> None:
        """Replace time, type and parameters of the event just read."""