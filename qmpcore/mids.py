"""Reader for RIFF MIDS (MIDI stream) files."""

from __future__ import annotations

import io
import logging
from dataclasses import replace

from .events import FileReader, MidiEvent, MidiFile, MidiTrack
from .smf import EventCallback, MidiFormatError

logger = logging.getLogger(__name__)

_EVENT_SHORT = 0
_EVENT_TEMPO = 1


def _dword(stream: io.BytesIO) -> int:
    data = stream.read(4)
    if len(data) < 4:
        raise MidiFormatError("Unexpected EOF")
    return int.from_bytes(data, "little")


class MidiStreamReader(FileReader):
    """Reads MIDS files into a single-track :class:`MidiFile`.

    ``on_event`` is called with a copy of every event right after it is
    stored; from there it may call :meth:`discard_current_event` or
    :meth:`commit_event_change`.
    """

    def __init__(self, on_event: EventCallback | None = None):
        self._on_event = on_event
        self._file: MidiFile | None = None
        self._discarded = False

    def read_file(self, path) -> MidiFile:
        result = MidiFile(tracks=[MidiTrack()])
        self._file = result
        try:
            try:
                with open(path, "rb") as fh:
                    stream = io.BytesIO(fh.read())
            except OSError as exc:
                raise MidiFormatError("File doesn't exist") from exc
            fmt = self._read_header(stream, result)
            self._read_body(stream, fmt)
        except MidiFormatError as exc:
            logger.error("%s is not a supported file. Cause: %s.", path, exc)
            result.valid = False
        return result

    def discard_current_event(self) -> None:
        self._discarded = True

    def commit_event_change(self, event: MidiEvent) -> None:
        if self._file is None or not self._file.tracks[-1].events:
            return
        last = self._file.tracks[-1].events[-1]
        last.time = event.time
        last.type = event.type
        last.p1 = event.p1
        last.p2 = event.p2

    @staticmethod
    def _read_header(stream: io.BytesIO, result: MidiFile) -> int:
        if stream.read(4) != b"RIFF":
            raise MidiFormatError("Wrong RIFF header")
        stream.seek(4, io.SEEK_CUR)
        if stream.read(8) != b"MIDSfmt ":
            raise MidiFormatError("Wrong RIFF header")
        if _dword(stream) != 0x0C:
            raise MidiFormatError("Wrong RIFF header")
        result.divs = _dword(stream)
        _dword(stream)
        return _dword(stream)

    def _read_body(self, stream: io.BytesIO, fmt: int) -> None:
        if stream.read(4) != b"data":
            raise MidiFormatError("MIDS data error")
        _dword(stream)
        block_count = _dword(stream)
        track = self._file.tracks[-1]
        iid = 0
        tick = 0
        for _ in range(block_count):
            _dword(stream)
            block_size = _dword(stream)
            start = stream.tell()
            while stream.tell() - start < block_size:
                tick = (tick + _dword(stream)) & 0xFFFFFFFF
                if not fmt & 1:
                    _dword(stream)
                word = _dword(stream)
                kind = word >> 24
                if kind == _EVENT_TEMPO:
                    event = MidiEvent(iid, tick, 0xFF, 0x51, 0, (word & 0xFFFFFF).to_bytes(3, "big"))
                elif kind == _EVENT_SHORT:
                    event = MidiEvent(iid, tick, word & 0xFF, (word >> 8) & 0xFF, (word >> 16) & 0xFF)
                else:
                    raise MidiFormatError("MIDS data error")
                track.append_event(event)
                self._discarded = False
                if self._on_event is not None:
                    self._on_event(replace(event))
                if self._discarded:
                    track.events.pop()
                iid += 1