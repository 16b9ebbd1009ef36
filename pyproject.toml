[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "qmpcore"
version = "0.8.8"
description = "MIDI file reading, timeline analysis and playback core with pluggable output devices"
requires-python = ">=3.10"
dependencies = []
keywords = ["midi", "smf", "mids", "rmid", "player", "sequencer", "synthesizer"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: MIDI",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
qmpcore = "qmpcore.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["qmpcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
