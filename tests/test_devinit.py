import pytest

from qmpcore.devinit import (
    BankStore,
    DeviceInitError,
    DeviceInitializer,
    parse_initializer,
    split_tokens,
)


def write(tmp_path, text):
    path = tmp_path / "device.ini"
    path.write_text(text, encoding="latin-1")
    return path


def test_split_tokens_drops_empty_pieces():
    assert split_tokens("a  b ", " ") == ["a", "b"]
    assert split_tokens("", " ") == []
    assert split_tokens("1=Piano", "=") == ["1", "Piano"]


def test_defaults():
    init = DeviceInitializer()
    assert len(init.init_values) == 130
    assert all(v == 0 for v in init.init_values)
    assert len(init.channel_init_values) == 16
    assert all(v == 0xFF for row in init.channel_init_values for v in row)


def test_sysex_line(tmp_path):
    init = parse_initializer(write(tmp_path, "X F0 41 10 F7\n"))
    (event,) = init.init_sequence.events
    assert event.type == 0xF0
    assert event.data == b"\xF0\x41\x10\xF7"
    assert event.time == 0


def test_sysex_with_delay(tmp_path):
    init = parse_initializer(write(tmp_path, "X F0 7E 7F 09 01 F7 32\n"))
    (event,) = init.init_sequence.events
    assert event.data == b"\xF0\x7E\x7F\x09\x01\xF7"
    assert event.time == 0x32


@pytest.mark.parametrize("line", ["X 41 F7", "X F0 41", "X F0", "X"])
def test_bad_sysex(tmp_path, line):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, line + "\n"))
    assert info.value.message == "invalid sysx"
    assert info.value.line == 1


def test_control_all_channels(tmp_path):
    init = parse_initializer(write(tmp_path, "C ff 07 64\n"))
    events = init.init_sequence.events
    assert [e.type for e in events] == [0xB0 | ch for ch in range(16)]
    assert all((e.p1, e.p2) == (0x07, 0x64) for e in events)


def test_control_single_channel(tmp_path):
    init = parse_initializer(write(tmp_path, "C 03 0a 40\n"))
    (event,) = init.init_sequence.events
    assert (event.type, event.p1, event.p2) == (0xB3, 0x0A, 0x40)


@pytest.mark.parametrize(
    "line, message",
    [
        ("C 00 07", "invalid control"),
        ("C 00 zz 40", "invalid control parameters"),
        ("C 20 07 40", "invalid channel"),
    ],
)
def test_bad_control(tmp_path, line, message):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, line + "\n"))
    assert info.value.message == message


def test_init_vector_with_repeat(tmp_path):
    init = parse_initializer(write(tmp_path, "IV 40,3 7f\n"))
    assert init.init_values[:3] == [0x40, 0x40, 0x40]
    assert init.init_values[3] == 0x7F
    assert init.init_values[4] == 0


def test_init_vector_value_out_of_range(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, "IV 100\n"))
    assert info.value.message == "invalid init vector value"


def test_init_vector_too_long(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, "IV 0,131\n"))
    assert info.value.message == "invalid init vector"


def test_channel_init_value(tmp_path):
    init = parse_initializer(write(tmp_path, "SIV 02 07 50\n"))
    assert init.channel_init_values[2][7] == 0x50
    assert init.channel_init_values[1][7] == 0xFF


def test_mapping(tmp_path):
    text = "# device map\nMAP\n[0:1:Bank]\n0=Piano\n5=EP\nENDMAP\n"
    init = parse_initializer(write(tmp_path, text))
    assert init.banks == {1: BankStore(presets={0: "Piano", 5: "EP"}, name="Bank")}


def test_mapping_bank_number(tmp_path):
    init = parse_initializer(write(tmp_path, "MAP\n[121:0:GM]\nENDMAP\n"))
    assert list(init.banks) == [121 << 7]


def test_instrument_outside_bank(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, "MAP\n0=Piano\n"))
    assert info.value.message == "inst outside a bank"
    assert info.value.line == 2


def test_nested_map(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, "MAP\nMAP\n"))
    assert info.value.line == 2
    assert info.value.message == "invalid command"


def test_endmap_without_map(tmp_path):
    with pytest.raises(DeviceInitError):
        parse_initializer(write(tmp_path, "ENDMAP\n"))


def test_command_inside_map(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, "MAP\nC 00 07 40\n"))
    assert info.value.message == "invalid command"


def test_bad_mapping_line(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, "MAP\nnonsense\n"))
    assert info.value.message == "invalid mapping line"


def test_short_bank_line(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(write(tmp_path, "MAP\n[0:1]\n"))
    assert info.value.message == "invalid bank"


def test_missing_file(tmp_path):
    with pytest.raises(DeviceInitError) as info:
        parse_initializer(tmp_path / "absent.ini")
    assert info.value.message == "file not found"
    assert str(info.value) == "line 0: file not found"