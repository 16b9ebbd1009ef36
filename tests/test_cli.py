import pytest

from qmpcore.cli import build_parser, main


def _smf(title: bytes = b"Hello") -> bytes:
    header = b"MThd" + (6).to_bytes(4, "big") + (0).to_bytes(2, "big") + (1).to_bytes(2, "big") + (96).to_bytes(2, "big")
    body = (
        b"\x00\xff\x03" + bytes([len(title)]) + title
        + b"\x00\xff\x51\x03\x07\xa1\x20"
        + b"\x00\x90\x3c\x40"
        + b"\x60\x80\x3c\x40"
        + b"\x00\xff\x2f\x00"
    )
    return header + b"MTrk" + len(body).to_bytes(4, "big") + body


def _dw(value: int) -> bytes:
    return value.to_bytes(4, "little")


def _mids() -> bytes:
    events = _dw(0) + _dw(0x00403C90) + _dw(96) + _dw(0x00003C80)
    block = _dw(0) + _dw(len(events)) + events
    data = b"data" + _dw(len(block) + 4) + _dw(1) + block
    fmt = b"MIDSfmt " + _dw(0x0C) + _dw(96) + _dw(0) + _dw(1)
    body = fmt + data
    return b"RIFF" + _dw(len(body)) + body


def test_parser_options():
    args = build_parser().parse_args(["-l", "--plugin", "mids", "a.mid", "b.mid"])
    assert args.load_all_files is True
    assert args.plugin == ["mids"]
    assert args.files == ["a.mid", "b.mid"]


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.files == []
    assert args.plugin == []
    assert args.load_all_files is False


def test_version_exits_cleanly():
    with pytest.raises(SystemExit) as info:
        main(["--version"])
    assert info.value.code == 0


def test_no_files_succeeds(capsys):
    assert main([]) == 0
    assert capsys.readouterr().out == ""


def test_loads_smf(tmp_path, capsys):
    path = tmp_path / "song.mid"
    path.write_bytes(_smf())
    assert main([str(path)]) == 0
    out = capsys.readouterr().out
    assert str(path) in out
    assert "title: Hello" in out
    assert "notes: 1" in out
    assert "length: 0.500 s" in out


def test_dump_matches_event_count(tmp_path, capsys):
    path = tmp_path / "song.mid"
    path.write_bytes(_smf())
    assert main(["--dump", str(path)]) == 0
    lines = capsys.readouterr().out.splitlines()
    counts = [line for line in lines if "events:" in line]
    assert len(counts) == 1
    count = int(counts[0].split("events:")[1].split()[0])
    dumped = [line for line in lines if line.startswith("type ")]
    assert len(dumped) == count


def test_unsupported_file_fails(tmp_path, capsys):
    path = tmp_path / "junk.mid"
    path.write_bytes(b"not midi at all")
    assert main([str(path)]) == 1
    assert "not a supported file" in capsys.readouterr().err


def test_missing_file_fails(tmp_path):
    assert main([str(tmp_path / "absent.mid")]) == 1


def test_mids_needs_plugin(tmp_path):
    path = tmp_path / "song.mds"
    path.write_bytes(_mids())
    assert main([str(path)]) == 1


def test_mids_with_plugin(tmp_path, capsys):
    path = tmp_path / "song.mds"
    path.write_bytes(_mids())
    assert main(["--plugin", "mids", str(path)]) == 0
    out = capsys.readouterr().out
    assert "division: 96" in out
    assert "notes: 1" in out


def test_unknown_plugin_is_usage_error():
    with pytest.raises(SystemExit) as info:
        main(["--plugin", "nonexistent"])
    assert info.value.code == 2


def test_load_all_files(tmp_path, capsys):
    first = tmp_path / "a.mid"
    second = tmp_path / "b.mid"
    first.write_bytes(_smf(b"One"))
    second.write_bytes(_smf(b"Two"))
    assert main(["-l", str(first)]) == 0
    out = capsys.readouterr().out
    assert "title: One" in out
    assert "title: Two" in out
    assert out.index(str(first)) < out.index(str(second))


def test_load_all_files_no_duplicates(tmp_path, capsys):
    first = tmp_path / "a.mid"
    second = tmp_path / "b.mid"
    first.write_bytes(_smf(b"One"))
    second.write_bytes(_smf(b"Two"))
    assert main(["-l", str(first), str(second)]) == 0
    out = capsys.readouterr().out
    assert out.count("title: One") == 1
    assert out.count("title: Two") == 1