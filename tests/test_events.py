import pytest

from qmpcore.events import FileReader, MidiEvent, MidiFile, MidiOutDevice, MidiTrack


def test_sort_key_orders_by_time_then_index():
    a = MidiEvent(iid=3, time=10, type=0x90)
    b = MidiEvent(iid=1, time=10, type=0x80)
    c = MidiEvent(iid=0, time=20, type=0x90)
    d = MidiEvent(iid=7, time=5, type=0xB0)
    ordered = sorted([a, b, c, d], key=MidiEvent.sort_key)
    assert ordered == [d, b, a, c]


def test_sort_key_values():
    event = MidiEvent(iid=4, time=96, type=0x90, p1=60, p2=100)
    assert event.sort_key() == (96, 4)


def test_event_defaults():
    event = MidiEvent(iid=0, time=0, type=0xC0, p1=5)
    assert (event.p2, event.data, event.flags) == (0, b"", 0)


def test_track_append_keeps_order():
    track = MidiTrack()
    first = MidiEvent(0, 0, 0x90, 60, 100)
    second = MidiEvent(1, 10, 0x80, 60, 0)
    track.append_event(first)
    track.append_event(second)
    assert track.events == [first, second]


def test_tracks_do_not_share_lists():
    one, two = MidiTrack(), MidiTrack()
    one.append_event(MidiEvent(0, 0, 0x90))
    assert two.events == []


def test_midi_file_defaults():
    midi = MidiFile()
    assert midi.tracks == []
    assert midi.valid is True
    assert midi.std == 0
    assert midi.title is None and midi.copyright is None


def test_out_device_is_abstract():
    with pytest.raises(TypeError):
        MidiOutDevice()


def test_file_reader_is_abstract():
    with pytest.raises(TypeError):
        FileReader()