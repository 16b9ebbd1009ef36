"""Playback order of a file's events, and the time table used for seeking.

A :class:`Timeline` walks the ordered events once to find the length of the
song in seconds.  It then walks them again and cuts the song into 100 equal
slices of time. For every slice boundary it records the index of the first
event after it and the channel state at that point.
"""

from __future__ import annotations

from .events import MidiEvent, MidiFile

CHANNELS = 16
SLOTS = 135
STAMPS = 101

SLOT_PROGRAM = 128
SLOT_PRESSURE = 129
SLOT_PITCH_BEND = 130
SLOT_TEMPO = 131
SLOT_TIME_SIGNATURE = 132
SLOT_KEY_SIGNATURE = 133
SLOT_BEND_RANGE = 134

DEFAULT_TEMPO = 0x7A120
DEFAULT_TIME_SIGNATURE = 0x04021808
DEFAULT_BEND_RANGE = 2

State = tuple[tuple[int | None, ...], ...]


def order_events(midi_file: MidiFile) -> list[MidiEvent]:
    """All events of all tracks in playback order.

    Events are ordered by tick, then by their index in the track; events
    with equal keys keep track order.
    """
    merged = [event for track in midi_file.tracks for event in track.events]
    return sorted(merged, key=MidiEvent.sort_key)


def decode_tempo(data: bytes) -> int:
    """Microseconds per quarter note from the payload of a tempo meta event."""
    return int.from_bytes(bytes(data[:3]), "big")


class _ChannelState:
    """Controller, program, bend and song-wide values while walking events.

    Controller slots 0..127 hold None until a value is seen.
    """

    def __init__(self, division: int):
        self.division = division
        self.tempo = DEFAULT_TEMPO
        self.rpn_id = [-1] * CHANNELS
        self.rpn_val = [-1] * CHANNELS
        self.values: list[list[int | None]] = []
        for _ in range(CHANNELS):
            row: list[int | None] = [None] * 128 + [0] * (SLOTS - 128)
            row[SLOT_TEMPO] = DEFAULT_TEMPO
            row[SLOT_TIME_SIGNATURE] = DEFAULT_TIME_SIGNATURE
            row[SLOT_KEY_SIGNATURE] = 0
            row[SLOT_BEND_RANGE] = DEFAULT_BEND_RANGE
            self.values.append(row)

    @property
    def ns_per_tick(self) -> float:
        return self.tempo * 1000.0 / self.division

    def freeze(self) -> State:
        return tuple(tuple(row) for row in self.values)

    def apply(self, event: MidiEvent) -> None:
        kind = event.type & 0xF0
        ch = event.type & 0x0F
        row = self.values[ch]
        if kind == 0xB0:
            if event.p1 == 100:
                self.rpn_id[ch] = event.p2
            if event.p1 == 6:
                self.rpn_val[ch] = event.p2
            if self.rpn_id[ch] != -1 and self.rpn_val[ch] != -1:
                if self.rpn_id[ch] == 0:
                    row[SLOT_BEND_RANGE] = self.rpn_val[ch]
                self.rpn_val[ch] = -1
            if event.p1 < SLOTS:
                row[event.p1] = event.p2
        elif kind == 0xC0:
            row[SLOT_PROGRAM] = event.p1
        elif kind == 0xD0:
            row[SLOT_PRESSURE] = event.p1
        elif kind == 0xE0:
            row[SLOT_PITCH_BEND] = (event.p1 | (event.p2 << 7)) & 0x3FFF
        elif event.type == 0xFF:
            self._apply_meta(event)

    def _apply_meta(self, event: MidiEvent) -> None:
        song = self.values[0]
        if event.p1 == 0x51:
            self.tempo = decode_tempo(event.data)
            song[SLOT_TEMPO] = self.tempo
        elif event.p1 == 0x58:
            data = bytes(event.data) + b"\0\0"
            song[SLOT_TIME_SIGNATURE] = (data[0] << 24) | (data[1] << 16)
        elif event.p1 == 0x59 and len(event.data) >= 2:
            sharps = int.from_bytes(bytes(event.data[:1]), "big", signed=True)
            song[SLOT_KEY_SIGNATURE] = (sharps << 8) | event.data[1]


def _intervals(events: list[MidiEvent], state: _ChannelState):
    """Apply events tick by tick; yield (next event index, seconds to it)."""
    index = 0
    count = len(events)
    if not count:
        return
    tick = events[0].time
    while index < count:
        while index < count and events[index].time == tick:
            state.apply(events[index])
            index += 1
        if index >= count:
            return
        yield index, (events[index].time - tick) * state.ns_per_tick / 1e9
        tick = events[index].time


class Timeline:
    """Song length and 101 seek points for a list of ordered events.

    ``total_time`` is the length in seconds.  Seek point ``i`` (0..100) lies
    at ``i`` percent of the song.
    """

    def __init__(self, events: list[MidiEvent], division: int):
        if division <= 0:
            raise ValueError("division must be positive")
        self.division = division
        self.event_count = len(events)
        self.total_time = sum(step for _, step in _intervals(events, _ChannelState(division)))
        self._stamps: list[int] = [0] * STAMPS
        self._states: list[State] = []
        self._build(events)

    def _build(self, events: list[MidiEvent]) -> None:
        state = _ChannelState(self.division)
        self._states.append(state.freeze())
        elapsed = 0.0
        cut = 1
        for index, step in _intervals(events, state):
            elapsed += step
            while cut < STAMPS and elapsed > self.total_time * cut / 100.0:
                self._states.append(state.freeze())
                self._stamps[cut] = index
                cut += 1
        while cut < STAMPS:
            self._states.append(state.freeze())
            self._stamps[cut] = self.event_count
            cut += 1

    def stamp(self, index: int) -> int:
        """Index of the first event at or after seek point ``index``."""
        if not 0 <= index < STAMPS:
            raise IndexError("stamp index out of range")
        return self._stamps[index]

    def snapshot(self, index: int) -> State:
        """Channel state at seek point ``index``: 16 rows of 135 slots.

        Slots 0..127 are controllers (None when unset), then program,
        channel pressure, pitch bend, tempo, time signature, key signature
        and pitch bend range.  Song-wide values live in row 0.
        """
        if not 0 <= index < STAMPS:
            raise IndexError("stamp index out of range")
        return self._states[index]