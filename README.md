# qmpcore

The core of a MIDI player: file readers, timeline analysis, a playback engine
and a synthesizer output device. It has no dependencies outside the standard
library.

## What is in it

- `qmpcore.events` holds the data types `MidiEvent`, `MidiTrack` and
  `MidiFile`. It also holds the abstract interfaces `MidiOutDevice`, which an
  output device implements, and `FileReader`, which a file reader implements.
- `qmpcore.smf` reads Standard MIDI Files.
  - `SMFReader` reads them, and also opens files wrapped in a RIFF `RMID`
    container. A file that cannot be read comes back with `valid` set to
    `False`, and the cause is logged.
  - It detects GM1, GM2, GS and XG reset messages and records the result in
    `MidiFile.std`. It takes the first title and copyright meta events as the
    file's title and copyright.
  - `ReaderCollection` tries its registered readers in order and returns the
    first valid result. An `SMFReader` is registered by default, under the
    name `"Default SMF Reader"`.
- `qmpcore.mids` provides `MidiStreamReader`, which reads RIFF `MIDS`
  stream files into a single track.
- `qmpcore.timeline` orders and times the events of a file.
  - `order_events` merges all tracks into playback order.
  - `Timeline` works out the song length in seconds, as `total_time`. It also
    records 101 seek points, one at each whole percent of the song. For each
    point, `stamp(i)` gives the event index and `snapshot(i)` the channel
    state.
- `qmpcore.player.MidiPlayer` loads files and plays them.
  - It plays in real time with pause (`set_paused`) and seek (`seek`).
  - It keeps mute and solo masks for each channel.
  - It tracks controllers, program, pitch bend and pitch bend range, as well
    as tempo, time signature and key signature.
  - It routes each channel to a registered output device; see
    `set_channel_output` below.
- `qmpcore.fluidout.FluidOutput` is a `MidiOutDevice` that drives a software
  synthesizer. You supply the synthesizer as a `SynthBackend` implementation,
  built by a factory function from the output's `settings` dict.
  - It keeps a table of the presets in the loaded soundfonts, which you can
    query with `bank_list`, `presets` and `preset_name`.
  - It exposes reverb and chorus control.
  - `audio_options` describes the user-facing synthesizer options.
- `qmpcore.devinit.parse_initializer` reads a device initializer file. Such a
  file holds:
  - an initialisation sequence made of `X` sysex lines and `C` controller
    lines;
  - initial controller values, from `IV` and `SIV` lines;
  - bank and preset names, in a `MAP` … `ENDMAP` block.

  It raises `DeviceInitError` on bad input, with the line number.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Command line

```
qmpcore [--plugin NAME] [-l | --load-all-files] [--dump] [files...]
```

The command loads each file and prints a report:

- its title and copyright, when the file has them;
- the number of events and notes;
- the division;
- the length in seconds.

A file that cannot be read is reported on standard error, and the exit status
is then 1.

The options are:

- `--plugin mids` also registers the MIDS reader. The option may be given
  more than once.
- `-l` / `--load-all-files` loads every file in the folder of each file named.
- `--dump` prints every event of each loaded file.
- `--version` prints the version.

On Windows there is also `--keep-console`. The command accepts it but does
nothing with it.

To see all options, run:

```
qmpcore --help
```

## Library use

```python
from qmpcore.player import MidiPlayer

player = MidiPlayer()
player.register_output(my_device, "My Device")   # any MidiOutDevice
player.set_channel_output(0, 0)
if player.load_file("song.mid"):
    player.player_init()
    player.play()          # blocks; run it in a thread to pause or seek
```

### Handlers

`register_event_handler(callback, post)` calls `callback` with each played
event. With `post=False` the handler runs before the event is sent; the event
it receives has flag bit 0 set when it is the last event at its tick. With
`post=True` the handler runs after the event is sent.

`register_event_read_handler(callback)` calls `callback` for every event while
a file is read. From inside such a handler you can:

- call `discard_current_event()` to drop the event;
- call `commit_event_change(event)` to change its time, type or parameters.

`register_file_read_finish_hook(callback)` calls `callback` with no arguments
once a file has been read.

### Routing channels

`set_channel_output(ch, output_id)` routes a channel to an output. It first
sends the new output the channel's controller and program state, then tells
the old output that the channel has left it.

## What it does not do

- **No audio or MIDI hardware.** The package has no output device for a
  hardware or system MIDI port. It ships no synthesizer either: `FluidOutput`
  does nothing until you give it a `SynthBackend`.
- **Initializer files are parsed only.** `parse_initializer` reads the file,
  but no device in the package uses the result.
- **The command only reports.** It loads and describes files; it does not
  play them.
- **No graphical interface.**