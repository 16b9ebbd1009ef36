"""The MIDI player: file loading, channel state, routing and timed playback."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable

from .events import FileReader, MidiEvent, MidiFile, MidiOutDevice
from .smf import ReaderCollection
from .timeline import (
    CHANNELS,
    DEFAULT_BEND_RANGE,
    DEFAULT_TEMPO,
    SLOT_BEND_RANGE,
    SLOT_KEY_SIGNATURE,
    SLOT_PROGRAM,
    SLOT_TEMPO,
    SLOT_TIME_SIGNATURE,
    Timeline,
    decode_tempo,
    order_events,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[MidiEvent], None]
FinishHook = Callable[[], None]

_STATUS_SLOTS = 130
_BEND_CENTER = 8192
_LONG_SLEEP_NS = 2.5e8
_WAKE_MARGIN_NS = 1e8
_RPN_CONTROLLERS = {6, 38, 100, 101}


@dataclass
class _Output:
    name: str
    device: MidiOutDevice
    refcnt: int = 0


class MidiPlayer:
    """Loads MIDI files and plays them to registered output devices.

    :meth:`play` blocks until the song ends or playback is stopped, so it is
    normally run in a thread of its own while other threads call
    :meth:`seek`, :meth:`set_paused` or :meth:`player_deinit`.
    """

    def __init__(self):
        self._readers = ReaderCollection(self._on_event_read)
        self._file: MidiFile | None = None
        self._events: list[MidiEvent] = []
        self.timeline: Timeline | None = None
        self.note_count = 0
        self.division = 0
        self.max_tick = 0

        self._outputs: list[_Output] = []
        self._mapped = [-1] * CHANNELS

        self._event_handlers: dict[int, tuple[EventHandler, bool]] = {}
        self._read_handlers: dict[int, EventHandler] = {}
        self._finish_hooks: dict[int, FinishHook] = {}
        self._next_handler_id = 0
        self._next_read_id = 0
        self._next_hook_id = 0

        self._cond = threading.Condition()
        self.last_event_times: list[float | None] = [None] * CHANNELS
        self.player_init()

    # ------------------------------------------------------------------
    # file loading

    def load_file(self, path) -> bool:
        """Read a file with the registered readers; return whether it loaded."""
        self.note_count = 0
        self._file = None
        self._events = []
        self.timeline = None
        midi = self._readers.read_file(path)
        if midi is None or not midi.valid:
            return False
        self.division = midi.divs
        self.max_tick = max((track.events[-1].time for track in midi.tracks if track.events), default=0)
        for hook in list(self._finish_hooks.values()):
            hook()
        events = order_events(midi)
        try:
            timeline = Timeline(events, midi.divs)
        except ValueError as exc:
            logger.error("%s cannot be played: %s", path, exc)
            return False
        self._file = midi
        self._events = events
        self.timeline = timeline
        return True

    @property
    def event_count(self) -> int:
        return len(self._events)

    @property
    def total_time(self) -> float:
        """Length of the loaded song in seconds."""
        return self.timeline.total_time if self.timeline is not None else 0.0

    @property
    def file_standard(self) -> int:
        return self._file.std if self._file is not None else 0

    @property
    def title(self) -> str:
        if self._file is None or self._file.title is None:
            return ""
        return self._file.title.decode("latin-1")

    @property
    def copyright(self) -> str:
        if self._file is None or self._file.copyright is None:
            return ""
        return self._file.copyright.decode("latin-1")

    def _on_event_read(self, event: MidiEvent) -> None:
        if event.type & 0xF0 == 0x90:
            self.note_count += 1
        for handler in list(self._read_handlers.values()):
            handler(event)

    # ------------------------------------------------------------------
    # playback state

    def player_init(self) -> None:
        """Reset tempo, signatures, channel state and playback position."""
        self.raw_tempo = DEFAULT_TEMPO
        self._ts_num = 4
        self._ts_den = 4
        self.key_signature = 0
        self.event_index = 0
        self.tick = 0
        self._stop = False
        self._paused = False
        self._resumed = False
        self.finished = False
        self._mute = 0
        self._solo = 0
        self._bend_range = [DEFAULT_BEND_RANGE] * CHANNELS
        self._bend_value = [_BEND_CENTER] * CHANNELS
        self.send_sysex = True
        self._rpn_id = [-1] * CHANNELS
        self._rpn_val = [-1] * CHANNELS
        self._status: list[list[int | None]] = [[None] * _STATUS_SLOTS for _ in range(CHANNELS)]
        self._ref_tick = 0
        self._ref_time = time.perf_counter_ns()

    def player_deinit(self) -> None:
        """Stop playback and drop the loaded file."""
        self.event_index = 0
        self._stop = True
        self.interrupt()
        self._paused = False
        self._file = None
        self._events = []
        self.timeline = None

    @property
    def stopped(self) -> bool:
        return self._stop

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def time_signature(self) -> tuple[int, int]:
        return self._ts_num, self._ts_den

    @property
    def _ns_per_tick(self) -> float:
        return self.raw_tempo * 1000.0 / self.division if self.division else 0.0

    def _device(self, ch: int) -> MidiOutDevice | None:
        index = self._mapped[ch]
        return self._outputs[index].device if 0 <= index < len(self._outputs) else None

    def _active_outputs(self):
        return [output for output in self._outputs if output.refcnt]

    def reset_devices(self) -> None:
        """Reset every output that has channels routed to it."""
        for output in self._active_outputs():
            output.device.reset(0xFF)

    def panic(self) -> None:
        """Silence all channels of every output in use."""
        for output in self._active_outputs():
            for ch in range(CHANNELS):
                output.device.panic(ch)

    def process_event(self, event: MidiEvent) -> bool:
        """Update state for an event; return whether it should be sent as is."""
        flagged = replace(event, flags=event.flags & 0xFE)
        idx = self.event_index
        if idx >= len(self._events) - 1 or self._events[idx + 1].time > event.time:
            flagged.flags |= 0x01
        for handler, post in list(self._event_handlers.values()):
            if not post:
                handler(flagged)
        ch = event.type & 0x0F
        kind = event.type & 0xF0
        if kind < 0xF0:
            self.last_event_times[ch] = time.time()
        if kind == 0x80:
            return True
        if kind == 0x90:
            if (self._mute >> ch) & 1 and event.p2:
                return False
            if self._solo and not (self._solo >> ch) & 1 and event.p2:
                return False
            return True
        if kind == 0xB0:
            self._process_controller(ch, event.p1, event.p2)
            return True
        if kind == 0xC0:
            self._status[ch][SLOT_PROGRAM] = event.p1
            return True
        if kind == 0xE0:
            self._bend_value[ch] = (event.p1 | (event.p2 << 7)) & 0x3FFF
            return True
        if kind == 0xF0:
            if event.type == 0xFF:
                self._process_meta(event)
            if event.type in (0xF0, 0xF7) and self.send_sysex:
                for output in self._active_outputs():
                    output.device.extended_message(event.data)
        return False

    def _process_controller(self, ch: int, cc: int, value: int) -> None:
        if cc == 100:
            self._rpn_id[ch] = value
        if cc == 6:
            self._rpn_val[ch] = value
        if self._rpn_id[ch] != -1 and self._rpn_val[ch] != -1:
            if self._rpn_id[ch] == 0:
                device = self._device(ch)
                if device is not None:
                    device.rpn_message(ch, 0, self._rpn_val[ch] << 7)
                self._bend_range[ch] = self._rpn_val[ch]
            self._rpn_id[ch] = self._rpn_val[ch] = -1
        if cc < _STATUS_SLOTS:
            self._status[ch][cc] = value

    def _process_meta(self, event: MidiEvent) -> None:
        data = bytes(event.data)
        if event.p1 == 0x51:
            self.raw_tempo = decode_tempo(data)
            self._ref_time = time.perf_counter_ns()
            self._ref_tick = self.tick
        elif event.p1 == 0x58 and len(data) >= 2:
            self._ts_num = data[0]
            self._ts_den = 1 << data[1]
        elif event.p1 == 0x59 and len(data) == 2:
            sharps = int.from_bytes(data[:1], "big", signed=True)
            self.key_signature = (sharps << 8) | data[1]

    # ------------------------------------------------------------------
    # playback

    def play(self) -> None:
        """Reset the outputs in use and play from the current position."""
        self.reset_devices()
        self._play_events()

    def _play_events(self) -> None:
        events = self._events
        count = len(events)
        if not count:
            self.finished = True
            return
        self._ref_tick = events[0].time
        self._ref_time = time.perf_counter_ns()
        self.tick = events[0].time
        while self.event_index < count:
            while self._paused and not self._stop:
                time.sleep(0.1)
            if self._resumed:
                self._resumed = False
                if self.event_index < count:
                    self.tick = events[self.event_index].time
                self._ref_tick = self.tick
                self._ref_time = time.perf_counter_ns()
                continue
            before = time.perf_counter_ns()
            while not self._stop and self.event_index < count and self.tick == events[self.event_index].time:
                event = events[self.event_index]
                if self.process_event(event):
                    device = self._device(event.type & 0x0F)
                    if device is not None:
                        device.basic_message(event.type, event.p1, event.p2)
                for handler, post in list(self._event_handlers.values()):
                    if post:
                        handler(event)
                self.event_index += 1
            if self._stop or self.event_index >= count:
                break
            self._wait_for(events[self.event_index].time, before)
            if self._stop:
                break
            self.tick = events[self.event_index].time
        if self.event_index >= count:
            self.finished = True

    def _wait_for(self, next_tick: int, before: int) -> None:
        send_time = time.perf_counter_ns() - before
        gap = (next_tick - self.tick) * self._ns_per_tick
        if send_time >= gap:
            return
        ns_sleep = gap - send_time
        correction = (self.tick - self._ref_tick) * self._ns_per_tick - (before - self._ref_time)
        if correction > 0:
            correction = 0
        elif ns_sleep + correction < 0:
            self._ref_tick = self.tick
            self._ref_time = time.perf_counter_ns()
            ns_sleep = correction = 0
        total = ns_sleep + correction
        if total > _LONG_SLEEP_NS:
            start = time.perf_counter_ns()
            with self._cond:
                interrupted = self._cond.wait(timeout=(total - _WAKE_MARGIN_NS) / 1e9)
            if interrupted and self._stop:
                return
            remaining = total - (time.perf_counter_ns() - start)
            if remaining > 0 and not interrupted and not self._stop:
                time.sleep(remaining / 1e9)
        elif total > 0:
            time.sleep(total / 1e9)

    def seek(self, event_index: int, stamp_index: int) -> None:
        """Jump to an event, restoring channel state from a timeline seek point."""
        self._resumed = True
        if event_index == len(self._events):
            self._stop = True
        else:
            self.event_index = event_index
        if self.timeline is not None:
            state = self.timeline.snapshot(stamp_index)
            for ch in range(CHANNELS):
                self._restore_channel(ch, state[ch])
            song = state[0]
            self.raw_tempo = song[SLOT_TEMPO]
            signature = song[SLOT_TIME_SIGNATURE]
            self._ts_num = signature >> 24
            self._ts_den = 1 << ((signature >> 16) & 0xFF)
            self.key_signature = song[SLOT_KEY_SIGNATURE]
        self.interrupt()

    def _restore_channel(self, ch: int, row) -> None:
        device = self._device(ch)
        for cc in range(120):
            value = row[cc]
            if value is not None:
                if device is not None:
                    device.basic_message(0xB0 | ch, cc, value)
                self._status[ch][cc] = value
        program = row[SLOT_PROGRAM]
        bend_range = row[SLOT_BEND_RANGE]
        if device is not None:
            device.basic_message(0xC0 | ch, program, 0)
            device.rpn_message(ch, 0, bend_range << 7)
        self._status[ch][SLOT_PROGRAM] = program
        self._bend_range[ch] = bend_range

    def interrupt(self) -> None:
        """Wake the playback loop from a long wait."""
        with self._cond:
            self._cond.notify()

    def set_paused(self, paused: bool) -> None:
        """Pause or resume playback; resuming restarts the timing reference."""
        self._paused = bool(paused)
        if not paused:
            self._resumed = True

    def tempo_bpm(self) -> float:
        return 60.0 / (self.raw_tempo / 1e6)

    def pitch_bend(self, ch: int) -> float:
        """Current pitch bend of a channel in semitones."""
        return (self._bend_value[ch] - _BEND_CENTER) / _BEND_CENTER * self._bend_range[ch]

    # ------------------------------------------------------------------
    # channel control

    def set_channel_preset(self, ch: int, bank: int, prog: int) -> None:
        self._status[ch][SLOT_PROGRAM] = prog
        self._status[ch][0] = bank >> 7
        self._status[ch][32] = bank & 0x7F
        device = self._device(ch)
        if device is None:
            return
        if not device.select_preset(ch, bank, prog):
            device.basic_message(0xB0 | ch, 0x00, bank >> 7)
            device.basic_message(0xB0 | ch, 0x20, bank & 0x7F)
            device.basic_message(0xC0 | ch, prog, 0)

    def set_mute(self, ch: int, muted: bool) -> None:
        self._mute = self._mute | (1 << ch) if muted else self._mute & ~(1 << ch)

    def set_solo(self, ch: int, solo: bool) -> None:
        self._solo = self._solo | (1 << ch) if solo else self._solo & ~(1 << ch)

    def channel_masked(self, ch: int) -> bool:
        """Whether note-ons of a channel are suppressed by mute or solo."""
        return bool((self._mute >> ch) & 1) or bool(self._solo and not (self._solo >> ch) & 1)

    def get_cc(self, ch: int, cc: int) -> int:
        """Controller (or program, at 128) value of a channel."""
        value = self._status[ch][cc]
        if value is not None:
            return value
        device = self._device(ch)
        return device.initial_cc_value(cc, ch) if device is not None else 0

    def set_cc(self, ch: int, cc: int, val: int) -> None:
        self._status[ch][cc] = val
        device = self._device(ch)
        if device is not None:
            device.basic_message(0xB0 | ch, cc, val)

    # ------------------------------------------------------------------
    # outputs

    def register_output(self, device: MidiOutDevice, name: str) -> None:
        self._outputs.append(_Output(name, device))

    def unregister_output(self, name: str) -> None:
        for index, output in enumerate(self._outputs):
            if output.name == name:
                output.device.device_deinit()
                del self._outputs[index]
                return

    def output_names(self) -> list[str]:
        return [output.name for output in self._outputs]

    def channel_output(self, ch: int) -> int:
        """Index of the output a channel is routed to, or -1."""
        return self._mapped[ch]

    def channel_output_device(self, ch: int) -> MidiOutDevice | None:
        return self._device(ch)

    def set_channel_output(self, ch: int, output_id: int) -> None:
        """Route a channel to an output, carrying its controller state over."""
        previous = self._mapped[ch]
        if previous == output_id:
            return
        if not 0 <= output_id < len(self._outputs):
            raise IndexError(f"no output with index {output_id}")
        new = self._outputs[output_id]
        new.refcnt += 1
        new.device.on_mapped(ch, new.refcnt)
        status = self._status[ch]
        for cc in range(124):
            if cc in _RPN_CONTROLLERS:
                continue
            value = status[cc]
            if value is None:
                value = new.device.initial_cc_value(cc, ch)
            new.device.basic_message(0xB0 | ch, cc, value)
        program = status[SLOT_PROGRAM]
        if program is None:
            program = new.device.initial_cc_value(SLOT_PROGRAM, ch)
        new.device.basic_message(0xC0 | ch, program, 0)
        self._mapped[ch] = output_id
        if 0 <= previous < len(self._outputs):
            old = self._outputs[previous]
            old.refcnt -= 1
            old.device.on_unmapped(ch, old.refcnt)

    # ------------------------------------------------------------------
    # handlers and readers

    def register_event_handler(self, callback: EventHandler, post: bool) -> int:
        """Call ``callback`` for every played event, before or after it is sent."""
        handler_id = self._next_handler_id
        self._next_handler_id += 1
        self._event_handlers[handler_id] = (callback, bool(post))
        return handler_id

    def unregister_event_handler(self, handler_id: int) -> None:
        self._event_handlers.pop(handler_id, None)

    def register_event_read_handler(self, callback: EventHandler) -> int:
        """Call ``callback`` for every event as a file is read."""
        handler_id = self._next_read_id
        self._next_read_id += 1
        self._read_handlers[handler_id] = callback
        return handler_id

    def unregister_event_read_handler(self, handler_id: int) -> None:
        self._read_handlers.pop(handler_id, None)

    def register_file_read_finish_hook(self, callback: FinishHook) -> int:
        """Call ``callback`` with no arguments after a file has been read."""
        hook_id = self._next_hook_id
        self._next_hook_id += 1
        self._finish_hooks[hook_id] = callback
        return hook_id

    def unregister_file_read_finish_hook(self, handler_id: int) -> None:
        self._finish_hooks.pop(handler_id, None)

    def register_reader(self, reader: FileReader, name: str) -> None:
        self._readers.register_reader(reader, name)

    def unregister_reader(self, name: str) -> None:
        self._readers.unregister_reader(name)

    def discard_current_event(self) -> None:
        """Drop the event being read; for use from event read handlers."""
        reader = self._readers.current_reader()
        if reader is not None:
            reader.discard_current_event()

    def commit_event_change(self, event: MidiEvent) -> None:
        """Change the event being read; for use from event read handlers."""
        reader = self._readers.current_reader()
        if reader is not None:
            reader.commit_event_change(event)

    def dump_file(self) -> list[str]:
        """One descriptive line per event of the loaded file, in track order."""
        if self._file is None:
            return []
        lines = []
        for track in self._file.tracks:
            for event in track.events:
                line = f"type {event.type:x} #{event.iid} @{event.time} p1 {event.p1} p2 {event.p2}"
                if event.data:
                    line += f" str {bytes(event.data).decode('latin-1')}"
                lines.append(line)
        return lines