"""Standard MIDI File reader."""

from __future__ import annotations

import io
import logging
from dataclasses import replace
from typing import Callable

from .events import FileReader, MidiEvent, MidiFile, MidiTrack

logger = logging.getLogger(__name__)

_GM1_SYSEX = b"\xF0\x7E\x7F\x09\x01\xF7"
_GM2_SYSEX = b"\xF0\x7E\x7F\x09\x03\xF7"
_GS_SYSEX = b"\xF0\x41\x10\x42\x12\x40\x00\x7F\x00\x41\xF7"
_XG_SYSEX = b"\xF0\x43\x10\x4C\x00\x00\x7E\x00\xF7"
_STANDARDS = {_GM1_SYSEX: 1, _GM2_SYSEX: 2, _GS_SYSEX: 3, _XG_SYSEX: 4}

_META_LENGTHS = {0x20: (1,), 0x2F: (0,), 0x51: (3,), 0x54: (5,), 0x58: (4,), 0x59: (2,), 0x00: (2, 0)}
_UNSTORED_META = {0x00, 0x20, 0x54}

EventCallback = Callable[[MidiEvent], None]


class MidiFormatError(Exception):
    """The file is not a readable Standard MIDI File."""


class SMFReader(FileReader):
    """Reads Standard MIDI Files, optionally wrapped in a RIFF RMID container.

    ``on_event`` is called with a copy of every stored event right after it is
    read; from there the callback may call :meth:`discard_current_event` or
    :meth:`commit_event_change`.
    """

    def __init__(self, on_event: EventCallback | None = None):
        self._on_event = on_event
        self._stream: io.BytesIO | None = None
        self._file: MidiFile | None = None
        self._track: MidiTrack | None = None
        self._track_count = 0
        self._time = 0
        self._iid = 0
        self._last_type = 0
        self._discarded = False

    def read_file(self, path) -> MidiFile:
        result = MidiFile()
        self._file = result
        try:
            try:
                with open(path, "rb") as fh:
                    self._stream = io.BytesIO(fh.read())
            except OSError as exc:
                raise MidiFormatError("Can't open file") from exc
            self._read_chunk(header=True)
            read = 0
            while read < self._track_count:
                read += self._read_chunk(header=False)
        except MidiFormatError as exc:
            logger.error("%s is not a supported file. Cause: %s.", path, exc)
            result.valid = False
        finally:
            self._stream = None
        return result

    def discard_current_event(self) -> None:
        if self._discarded or self._track is None or not self._track.events:
            return
        self._discarded = True
        self._track.events.pop()

    def commit_event_change(self, event: MidiEvent) -> None:
        if self._track is None or not self._track.events:
            return
        last = self._track.events[-1]
        last.time = event.time
        last.type = event.type
        last.p1 = event.p1
        last.p2 = event.p2

    def _located(self, message: str) -> str:
        return f"{message} at {self._stream.tell():#x}"

    def _fail(self, message: str) -> None:
        raise MidiFormatError(self._located(message))

    def _warn(self, message: str) -> None:
        logger.warning("%s.", self._located(message))

    def _check(self, condition: bool, what: str) -> None:
        if not condition:
            self._warn(f"unexpected length of {what}")

    def _skip(self, count: int) -> None:
        self._stream.seek(count, io.SEEK_CUR)

    def _read_bytes(self, count: int) -> bytes:
        data = self._stream.read(count)
        if len(data) < count:
            self._fail("Unexpected EOF")
        return data

    def _read_u8(self) -> int:
        return self._read_bytes(1)[0]

    def _read_u16(self) -> int:
        return int.from_bytes(self._read_bytes(2), "big")

    def _read_u32(self) -> int:
        return int.from_bytes(self._read_bytes(4), "big")

    def _read_varlen(self) -> int:
        value = 0
        count = 0
        while True:
            byte = self._read_u8()
            count += 1
            if count > 4:
                self._fail("Variable length type overflow")
            value = (value << 7) | (byte & 0x7F)
            if not byte & 0x80:
                return value

    def _read_chunk(self, header: bool) -> int:
        tag = self._stream.read(4)
        if len(tag) < 4:
            self._fail("Unexpected EOF")
        if header:
            if tag == b"RIFF":
                self._skip(4)
                if self._stream.read(4) != b"RMID":
                    self._fail("Wrong file type in RIFF container")
                self._skip(8)
                tag = self._stream.read(4)
            if tag != b"MThd":
                self._fail("Wrong MIDI header.")
            self._read_header()
            return 0
        if tag != b"MTrk":
            self._warn("Wrong track chunk header. Ignoring the entire chunk")
            self._skip(self._read_u32())
            return 0
        self._read_track()
        return 1

    def _read_header(self) -> None:
        length = self._read_u32()
        start = self._stream.tell()
        if length < 6:
            self._fail("Header chunk too short")
        if length > 6:
            self._warn("Header chunk length longer than expected. Ignoring extra bytes")
        self._read_u16()
        self._track_count = self._read_u16()
        self._file.divs = self._read_u16()
        if self._file.divs & 0x8000:
            self._fail("SMTPE format is not supported")
        consumed = self._stream.tell() - start
        if consumed < length:
            self._skip(length - consumed)

    def _read_track(self) -> None:
        self._track = MidiTrack()
        self._file.tracks.append(self._track)
        length = self._read_u32()
        start = self._stream.tell()
        self._time = 0
        self._iid = 0
        while self._read_event():
            pass
        consumed = self._stream.tell() - start
        if consumed < length:
            self._warn("Extra bytes after EOT event")
            self._skip(length - consumed)
        elif consumed > length:
            self._fail("Read past end of track")

    def _read_event(self) -> bool:
        """Read one event; return False at the end of the track."""
        self._time += self._read_varlen()
        status = self._read_u8()
        self._discarded = False
        if not status & 0x80:
            self._stream.seek(-1, io.SEEK_CUR)
            status = self._last_type
        kind = status & 0xF0
        event = None
        if kind in (0x80, 0x90, 0xA0, 0xB0, 0xE0):
            p1 = self._read_u8()
            p2 = self._read_u8()
            event = MidiEvent(self._iid, self._time, status, p1, p2)
        elif kind in (0xC0, 0xD0):
            event = MidiEvent(self._iid, self._time, status, self._read_u8(), 0)
        elif status == 0xFF:
            meta = self._read_u8()
            length = self._read_varlen()
            if 0 < length <= 1024:
                text = self._stream.read(length)
            else:
                self._skip(length)
                text = b""
            if meta in _META_LENGTHS:
                self._check(length in _META_LENGTHS[meta], f"meta event {meta:#x}")
            if meta == 0x2F:
                return False
            if meta not in _UNSTORED_META:
                event = MidiEvent(self._iid, self._time, status, meta, 0, text)
                if text and meta == 0x03 and self._file.title is None:
                    self._file.title = text.split(b"\0", 1)[0]
                if text and meta == 0x02 and self._file.copyright is None:
                    self._file.copyright = text.split(b"\0", 1)[0]
        elif status in (0xF0, 0xF7):
            payload = self._read_bytes(self._read_varlen())
            if status == 0xF0:
                payload = b"\xF0" + payload
            event = MidiEvent(self._iid, self._time, status, 0, 0, payload)
            standard = _STANDARDS.get(payload)
            if standard is not None:
                self._file.std = standard
        else:
            self._warn(f"Unknown event type {status:#x}")
        self._last_type = status
        self._iid += 1
        if event is not None:
            self._track.append_event(event)
            if self._on_event is not None:
                self._on_event(replace(event))
        return True


class ReaderCollection:
    """Named file readers tried in registration order."""

    DEFAULT_READER_NAME = "Default SMF Reader"

    def __init__(self, on_event: EventCallback | None = None):
        self._readers: list[tuple[FileReader, str]] = []
        self._current: FileReader | None = None
        self.register_reader(SMFReader(on_event), self.DEFAULT_READER_NAME)

    def register_reader(self, reader: FileReader, name: str) -> None:
        """Add a reader; a name that is already registered is ignored."""
        if any(existing == name for _, existing in self._readers):
            return
        self._readers.append((reader, name))

    def unregister_reader(self, name: str) -> None:
        for index, (_, existing) in enumerate(self._readers):
            if existing == name:
                del self._readers[index]
                return

    def read_file(self, path) -> MidiFile | None:
        """Return the first valid result of the readers, or None."""
        try:
            for reader, _ in list(self._readers):
                self._current = reader
                candidate = reader.read_file(path)
                if candidate is not None and candidate.valid:
                    return candidate
            return None
        finally:
            self._current = None

    def current_reader(self) -> FileReader | None:
        """The reader that is reading right now, if any."""
        return self._current