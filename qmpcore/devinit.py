"""Parser for device initializer files.

An initializer file describes what to send to an external device on reset
(``X`` sysex lines, ``C`` controller lines), the controller values the device
holds after reset (``IV`` and ``SIV`` lines) and, between ``MAP`` and
``ENDMAP``, the names of its banks (``[msb:lsb:name]``) and presets
(``program=name``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import partial

from .events import MidiEvent, MidiTrack

CC_SLOTS = 130
CHANNELS = 16
UNSET = 0xFF

_HEX = re.compile(r"\s*([+-]?)(?:0[xX](?=[0-9a-fA-F]))?([0-9a-fA-F]+)")
_DEC = re.compile(r"\s*([+-]?\d+)")
_REPEAT = re.compile(r",\s*([+-]?\d+)")


class DeviceInitError(ValueError):
    """An initializer file could not be parsed."""

    def __init__(self, line: int, message: str):
        super().__init__(f"line {line}: {message}")
        self.line = line
        self.message = message


@dataclass
class BankStore:
    """Name of a bank and the names of its presets by program number."""

    presets: dict[int, str] = field(default_factory=dict)
    name: str = ""


def _unset_table() -> list[list[int]]:
    return [[UNSET] * CC_SLOTS for _ in range(CHANNELS)]


@dataclass
class DeviceInitializer:
    """Everything an initializer file describes."""

    init_sequence: MidiTrack = field(default_factory=MidiTrack)
    banks: dict[int, BankStore] = field(default_factory=dict)
    init_values: list[int] = field(default_factory=lambda: [0] * CC_SLOTS)
    channel_init_values: list[list[int]] = field(default_factory=_unset_table)


def split_tokens(text: str, sep: str) -> list[str]:
    """Split ``text`` at ``sep``, dropping empty pieces."""
    return [piece for piece in text.split(sep) if piece]


def _scan_hex(text: str) -> re.Match | None:
    return _HEX.match(text)


def _hex_value(match: re.Match) -> int:
    value = int(match[2], 16)
    return -value if match[1] == "-" else value


def _byte(token: str) -> int:
    """Parse a one- or two-digit hex byte; -1 if it is not one."""
    if not token or len(token) > 2:
        return -1
    match = _scan_hex(token)
    if match is None:
        return -1
    value = _hex_value(match)
    return value if 0 <= value <= 0xFF else -1


def _leading_int(text: str) -> int:
    match = _DEC.match(text)
    return int(match[1]) if match else 0


def _append(init: DeviceInitializer, **kwargs) -> None:
    events = init.init_sequence.events
    init.init_sequence.append_event(MidiEvent(iid=len(events), **kwargs))


def _parse_sysex(init: DeviceInitializer, tokens: list[str], error) -> None:
    data = bytearray(_byte(token) & 0xFF for token in tokens)
    if not data or data[0] != 0xF0:
        raise error("invalid sysx")
    delay = 0
    if data[-1] != 0xF7:
        delay = data.pop()
        if not data or data[-1] != 0xF7:
            raise error("invalid sysx")
    _append(init, time=delay, type=0xF0, data=bytes(data))


def _parse_control(init: DeviceInitializer, tokens: list[str], error) -> None:
    if len(tokens) != 4:
        raise error("invalid control")
    ch, cc, cv = (_byte(token) for token in tokens[1:])
    if cc < 0 or cv < 0:
        raise error("invalid control parameters")
    if ch == 0xFF:
        channels = range(CHANNELS)
    elif 0 <= ch < CHANNELS:
        channels = (ch,)
    else:
        raise error("invalid channel")
    for channel in channels:
        _append(init, time=0, type=0xB0 | channel, p1=cc, p2=cv)


def _parse_init_vector(init: DeviceInitializer, tokens: list[str], error) -> None:
    index = 0
    for token in tokens:
        value, repeat = 0, 1
        match = _scan_hex(token)
        if match is not None:
            value = _hex_value(match)
            if "," in token:
                rep = _REPEAT.match(token, match.end())
                if rep is not None:
                    repeat = int(rep[1])
        if not 0 <= value <= 0xFF:
            raise error("invalid init vector value")
        for _ in range(repeat):
            if index >= CC_SLOTS:
                raise error("invalid init vector")
            init.init_values[index] = value
            index += 1


def _parse_channel_init(init: DeviceInitializer, tokens: list[str], error) -> None:
    if len(tokens) < 4:
        raise error("invalid control parameters")
    ch, cc, cv = (_byte(token) for token in tokens[1:4])
    if not 0 <= ch < CHANNELS or not 0 <= cc < CC_SLOTS:
        raise error("invalid control parameters")
    init.channel_init_values[ch][cc] = cv & 0xFF


def parse_initializer(path) -> DeviceInitializer:
    """Parse an initializer file; raise :class:`DeviceInitError` on bad input."""
    try:
        handle = open(path, encoding="latin-1", newline="\n")
    except OSError as exc:
        raise DeviceInitError(0, "file not found") from exc
    init = DeviceInitializer()
    in_mapping = False
    msb = lsb = -1
    with handle:
        for lineno, raw in enumerate(handle, 1):
            if raw.startswith("#"):
                continue
            error = partial(DeviceInitError, lineno)
            line = raw.rstrip("\n")
            tokens = split_tokens(line, " ")
            if not tokens:
                continue
            command = tokens[0]
            if command == "MAP":
                if in_mapping:
                    raise error("invalid command")
                in_mapping = True
            elif command == "ENDMAP":
                if not in_mapping:
                    raise error("invalid command")
                in_mapping = False
            elif command in ("X", "C", "IV", "SIV") and in_mapping:
                raise error("invalid command")
            elif command == "X":
                _parse_sysex(init, tokens[1:], error)
            elif command == "C":
                _parse_control(init, tokens, error)
            elif command == "IV":
                _parse_init_vector(init, tokens[1:], error)
            elif command == "SIV":
                _parse_channel_init(init, tokens, error)
            elif in_mapping:
                if line.startswith("[") and line.endswith("]"):
                    parts = split_tokens(line[1:-1], ":")
                    if len(parts) < 3:
                        raise error("invalid bank")
                    msb, lsb = _leading_int(parts[0]), _leading_int(parts[1])
                    init.banks[(msb << 7 | lsb) & 0xFFFF] = BankStore(name=parts[2])
                elif "=" in line:
                    if msb < 0 or lsb < 0:
                        raise error("inst outside a bank")
                    parts = split_tokens(line, "=")
                    if len(parts) < 2:
                        raise error("invalid inst")
                    bank = init.banks.setdefault((msb << 7 | lsb) & 0xFFFF, BankStore())
                    bank.presets[_leading_int(parts[0]) & 0xFF] = parts[1]
                else:
                    raise error("invalid mapping line")
    return init