"""Command line entry point: load MIDI files and report what they hold."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

from .events import FileReader
from .mids import MidiStreamReader
from .player import MidiPlayer

logger = logging.getLogger(__name__)

_VERSION = "0.8.8"

_PluginFactory = Callable[[MidiPlayer], tuple[FileReader, str]]

_PLUGINS: dict[str, _PluginFactory] = {
    "mids": lambda player: (MidiStreamReader(player._on_event_read), "MIDS reader"),
}


def build_parser() -> argparse.ArgumentParser:
    """The argument parser of the command."""
    parser = argparse.ArgumentParser(
        prog="qmidiplayer",
        description="A cross-platform MIDI player.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_VERSION}")
    parser.add_argument(
        "files", nargs="*", metavar="files",
        help="midi files to play (optional).",
    )
    parser.add_argument(
        "--plugin", action="append", default=[], metavar="plugin",
        help=f"Load a plugin ({', '.join(sorted(_PLUGINS))}).",
    )
    parser.add_argument(
        "-l", "--load-all-files", action="store_true",
        help="Load all files from the same folder.",
    )
    parser.add_argument(
        "--dump", action="store_true",
        help="Print every event of each loaded file.",
    )
    if sys.platform == "win32":
        parser.add_argument(
            "--keep-console", action="store_true",
            help="Keep console window open.",
        )
    return parser


def _expand_files(paths: list[str], load_all: bool) -> list[Path]:
    """The files to load, with folders expanded when ``load_all`` is set."""
    result: list[Path] = []
    seen: set[Path] = set()
    for name in paths:
        path = Path(name)
        candidates = [path]
        if load_all:
            folder = path.parent
            try:
                candidates = sorted(p for p in folder.iterdir() if p.is_file())
            except OSError as exc:
                logger.error("cannot list %s: %s", folder, exc)
        for candidate in candidates:
            key = candidate.resolve()
            if key not in seen:
                seen.add(key)
                result.append(candidate)
    return result


def _describe(player: MidiPlayer, path: Path, dump: bool) -> list[str]:
    lines = [str(path)]
    if player.title:
        lines.append(f"  title: {player.title}")
    if player.copyright:
        lines.append(f"  copyright: {player.copyright}")
    lines.append(
        f"  events: {player.event_count}  notes: {player.note_count}"
        f"  division: {player.division}"
    )
    lines.append(f"  length: {player.total_time:.3f} s")
    if dump:
        lines.extend(player.dump_file())
    return lines


def main(argv=None) -> int:
    """Run the command; return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    player = MidiPlayer()
    for name in args.plugin:
        factory = _PLUGINS.get(name)
        if factory is None:
            parser.error(f"unknown plugin: {name}")
        reader, reader_name = factory(player)
        player.register_reader(reader, reader_name)
    status = 0
    for path in _expand_files(args.files, args.load_all_files):
        if not player.load_file(path):
            print(f"{path}: not a supported file", file=sys.stderr)
            status = 1
            continue
        for line in _describe(player, path, args.dump):
            print(line)
    return status


if __name__ == "__main__":
    sys.exit(main())