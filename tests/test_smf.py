import struct

import pytest

from qmpcore.events import FileReader, MidiFile
from qmpcore.smf import ReaderCollection, SMFReader

EOT = b"\x00\xFF\x2F\x00"


def header(ntracks, division=480, fmt=1, length=6, extra=b""):
    return b"MThd" + struct.pack(">IHHH", length, fmt, ntracks, division) + extra


def track(body):
    return b"MTrk" + struct.pack(">I", len(body)) + body


@pytest.fixture
def write(tmp_path):
    def _write(data, name="song.mid"):
        path = tmp_path / name
        path.write_bytes(data)
        return path

    return _write


def test_basic_events_and_running_status(write):
    body = (
        b"\x00\xFF\x51\x03\x07\xA1\x20"
        + b"\x00\x90\x3C\x64"
        + b"\x60\x3C\x00"
        + b"\x00\xC0\x05"
        + EOT
    )
    midi = SMFReader().read_file(write(header(1) + track(body)))
    assert midi.valid
    assert midi.divs == 480
    events = midi.tracks[0].events
    assert [(e.type, e.p1, e.p2) for e in events] == [
        (0xFF, 0x51, 0),
        (0x90, 0x3C, 0x64),
        (0x90, 0x3C, 0x00),
        (0xC0, 0x05, 0),
    ]
    assert events[0].data == b"\x07\xA1\x20"
    assert [e.time for e in events] == [0, 0, 0x60, 0x60]
    assert [e.iid for e in events] == [0, 1, 2, 3]


def test_unstored_meta_still_takes_an_index(write):
    body = b"\x00\xFF\x00\x02\x00\x01" + b"\x00\x90\x3C\x64" + EOT
    midi = SMFReader().read_file(write(header(1) + track(body)))
    events = midi.tracks[0].events
    assert len(events) == 1
    assert events[0].iid == 1


def test_title_and_copyright_first_only(write):
    body = (
        b"\x00\xFF\x03\x04Song"
        + b"\x00\xFF\x03\x05Other"
        + b"\x00\xFF\x02\x04Mine"
        + EOT
    )
    midi = SMFReader().read_file(write(header(1) + track(body)))
    assert midi.title == b"Song"
    assert midi.copyright == b"Mine"
    assert [e.data for e in midi.tracks[0].events] == [b"Song", b"Other", b"Mine"]


@pytest.mark.parametrize(
    "payload, standard",
    [
        (b"\x7E\x7F\x09\x01\xF7", 1),
        (b"\x7E\x7F\x09\x03\xF7", 2),
        (b"\x41\x10\x42\x12\x40\x00\x7F\x00\x41\xF7", 3),
        (b"\x43\x10\x4C\x00\x00\x7E\x00\xF7", 4),
    ],
)
def test_sysex_detects_standard(write, payload, standard):
    body = b"\x00\xF0" + bytes([len(payload)]) + payload + EOT
    midi = SMFReader().read_file(write(header(1) + track(body)))
    assert midi.std == standard
    event = midi.tracks[0].events[0]
    assert event.type == 0xF0
    assert event.data == b"\xF0" + payload


def test_escaped_sysex_keeps_raw_bytes(write):
    body = b"\x00\xF7\x03\x01\x02\x03" + EOT
    midi = SMFReader().read_file(write(header(1) + track(body)))
    event = midi.tracks[0].events[0]
    assert (event.type, event.data) == (0xF7, b"\x01\x02\x03")
    assert midi.std == 0


def test_multiple_tracks(write):
    data = header(2) + track(b"\x00\x90\x3C\x64" + EOT) + track(b"\x10\x91\x40\x50" + EOT)
    midi = SMFReader().read_file(write(data))
    assert len(midi.tracks) == 2
    second = midi.tracks[1].events[0]
    assert (second.time, second.type, second.p1, second.p2) == (0x10, 0x91, 0x40, 0x50)


def test_missing_file_is_invalid(tmp_path):
    midi = SMFReader().read_file(tmp_path / "absent.mid")
    assert midi.valid is False


def test_wrong_header_is_invalid(write):
    midi = SMFReader().read_file(write(b"XXXX" + b"\x00" * 20))
    assert midi.valid is False


def test_short_header_chunk_is_invalid(write):
    data = b"MThd" + struct.pack(">IHH", 4, 1, 1)
    assert SMFReader().read_file(write(data)).valid is False


def test_longer_header_is_accepted(write):
    data = header(1, length=8, extra=b"\x00\x00") + track(b"\x00\x90\x3C\x64" + EOT)
    midi = SMFReader().read_file(write(data))
    assert midi.valid
    assert len(midi.tracks[0].events) == 1


def test_smpte_division_is_invalid(write):
    data = header(1, division=0xE728) + track(EOT)
    assert SMFReader().read_file(write(data)).valid is False


def test_riff_container(write):
    smf = header(1) + track(b"\x00\x90\x3C\x64" + EOT)
    data = b"RIFF" + struct.pack("<I", len(smf) + 12) + b"RMID" + b"data" + struct.pack("<I", len(smf)) + smf
    midi = SMFReader().read_file(write(data))
    assert midi.valid
    assert midi.tracks[0].events[0].p1 == 0x3C


def test_riff_with_wrong_type_is_invalid(write):
    data = b"RIFF" + b"\x00" * 4 + b"WAVE" + b"\x00" * 12
    assert SMFReader().read_file(write(data)).valid is False


def test_unknown_chunk_is_skipped(write):
    junk = b"JUNK" + struct.pack(">I", 3) + b"abc"
    data = header(1) + junk + track(b"\x00\x90\x3C\x64" + EOT)
    midi = SMFReader().read_file(write(data))
    assert midi.valid
    assert len(midi.tracks) == 1


def test_truncated_track_is_invalid(write):
    data = header(1) + b"MTrk" + struct.pack(">I", 100) + b"\x00\x90\x3C"
    assert SMFReader().read_file(write(data)).valid is False


def test_varlen_overflow_is_invalid(write):
    body = b"\x81\x81\x81\x81\x00\x90\x3C\x64" + EOT
    assert SMFReader().read_file(write(header(1) + track(body))).valid is False


def test_extra_bytes_after_eot_are_skipped(write):
    first = b"MTrk" + struct.pack(">I", len(EOT) + 3) + EOT + b"\x01\x02\x03"
    data = header(2) + first + track(b"\x00\x92\x30\x40" + EOT)
    midi = SMFReader().read_file(write(data))
    assert midi.valid
    assert midi.tracks[0].events == []
    assert midi.tracks[1].events[0].type == 0x92


def test_read_past_end_of_track_is_invalid(write):
    body = b"\x00\x90\x3C\x64" + EOT
    data = header(1) + b"MTrk" + struct.pack(">I", 2) + body
    assert SMFReader().read_file(write(data)).valid is False


def test_callback_sees_every_event(write):
    seen = []
    reader = SMFReader(seen.append)
    body = b"\x00\x90\x3C\x64" + b"\x10\x80\x3C\x00" + EOT
    midi = reader.read_file(write(header(1) + track(body)))
    assert seen == midi.tracks[0].events


def test_discard_from_callback(write):
    holder = {}

    def drop_zero_velocity(event):
        if event.type & 0xF0 == 0x90 and event.p2 == 0:
            holder["reader"].discard_current_event()
            holder["reader"].discard_current_event()

    reader = SMFReader(drop_zero_velocity)
    holder["reader"] = reader
    body = b"\x00\x90\x3C\x64" + b"\x10\x3C\x00" + b"\x10\x3E\x64" + EOT
    midi = reader.read_file(write(header(1) + track(body)))
    assert [(e.p1, e.p2) for e in midi.tracks[0].events] == [(0x3C, 0x64), (0x3E, 0x64)]


def test_commit_from_callback(write):
    holder = {}

    def transpose(event):
        if event.type & 0xF0 == 0x90:
            event.p1 += 12
            holder["reader"].commit_event_change(event)

    reader = SMFReader(transpose)
    holder["reader"] = reader
    body = b"\x00\x90\x3C\x64" + b"\x00\xB0\x07\x64" + EOT
    midi = reader.read_file(write(header(1) + track(body)))
    events = midi.tracks[0].events
    assert events[0].p1 == 0x3C + 12
    assert events[1].p1 == 0x07


class FixedReader(FileReader):
    def __init__(self, valid):
        self.valid = valid
        self.collection = None
        self.seen_current = None

    def read_file(self, path):
        self.seen_current = self.collection.current_reader()
        return MidiFile(divs=96, valid=self.valid)

    def discard_current_event(self):
        pass

    def commit_event_change(self, event):
        pass


def test_collection_reads_smf_with_default_reader(write):
    collection = ReaderCollection()
    midi = collection.read_file(write(header(1) + track(b"\x00\x90\x3C\x64" + EOT)))
    assert midi is not None and midi.divs == 480
    assert collection.current_reader() is None


def test_collection_falls_back_to_other_reader(write):
    collection = ReaderCollection()
    custom = FixedReader(valid=True)
    custom.collection = collection
    collection.register_reader(custom, "Fixed")
    midi = collection.read_file(write(b"not a midi file at all"))
    assert midi.divs == 96
    assert custom.seen_current is custom
    assert collection.current_reader() is None


def test_collection_returns_none_when_all_fail(write):
    collection = ReaderCollection()
    failing = FixedReader(valid=False)
    failing.collection = collection
    collection.register_reader(failing, "Failing")
    assert collection.read_file(write(b"garbage")) is None


def test_collection_ignores_duplicate_names(write):
    collection = ReaderCollection()
    duplicate = FixedReader(valid=True)
    duplicate.collection = collection
    collection.register_reader(duplicate, ReaderCollection.DEFAULT_READER_NAME)
    assert collection.read_file(write(b"garbage")) is None


def test_collection_unregister_default(write):
    collection = ReaderCollection()
    collection.unregister_reader(ReaderCollection.DEFAULT_READER_NAME)
    path = write(header(1) + track(EOT))
    assert collection.read_file(path) is None


def test_collection_passes_callback_to_default_reader(write):
    seen = []
    collection = ReaderCollection(seen.append)
    midi = collection.read_file(write(header(1) + track(b"\x00\x90\x3C\x64" + EOT)))
    assert seen == midi.tracks[0].events