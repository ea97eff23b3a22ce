"""Command-line option handling for the waveform analysis run."""

from __future__ import annotations

import re
import sys
from dataclasses import dataclass, field
from typing import Sequence

from drspulse.config import Configuration, load_configuration

_BANNER = "-------------- TimingDAQ (DRS2Root) --------------"
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


def _atoi(text: str) -> int:
    """Leading integer of ``text``, or 0 when there is none."""
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def parse_command_line(argv: Sequence[str], opt: str) -> str:
    """Value of the first argument that contains ``--opt``.

    ``--opt=value`` gives ``value``; a bare ``--opt`` gives ``"true"``.
    An empty value does not stop the search. ``""`` means not given.
    """
    flag = f"--{opt}"
    for arg in argv:
        if flag in arg:
            value = arg.split("=", 1)[1] if "=" in arg else "true"
            if value:
                return value
    return ""


@dataclass
class RunOptions:
    """Settings of one analysis run, as given on the command line."""

    config: Configuration
    input_file_path: str = ""
    output_file_path: str = ""
    verbose: bool = False
    n_evts: int = 0
    start_evt: int = 0
    n_evt_expected: int = -1
    correct_for_time_offsets: bool = False
    save_raw: bool = False
    draw_debug_pulses: bool = False
    img_format: str = ".png"
    extra: dict[str, str] = field(default_factory=dict)


def get_command_line_args(argv: Sequence[str] | None = None) -> RunOptions:
    """Read the run settings from ``argv`` (without the program name).

    The configuration file named by ``--config`` is loaded; a missing or
    unreadable file raises :class:`drspulse.config.ConfigurationError`.
    """
    args = list(sys.argv[1:] if argv is None else argv)
    print(_BANNER)

    def get(opt: str) -> str:
        return parse_command_line(args, opt)

    verbose = get("verbose").lower() == "true"
    config = load_configuration(get("config"), verbose)
    options = RunOptions(
        config=config,
        input_file_path=get("input_file"),
        output_file_path=get("output_file"),
        verbose=verbose,
        n_evts=_atoi(get("N_evts")),
        n_evt_expected=_atoi(get("N_evt_expected")),
    )

    start = get("start_evt")
    if start:
        options.start_evt = _atoi(start)
        print(f"[INFO] Starting from event: {options.start_evt}")

    options.correct_for_time_offsets = get("correctForTimeOffsets").lower() == "true"

    if get("save_raw").lower() == "true":
        options.save_raw = True
        print("save raw")

    debug = get("draw_debug_pulses").lower()
    if debug not in ("false", ""):
        if debug != "true":
            options.img_format = debug
        print(f"[INFO]: Saving debug pulses in {options.img_format}")
        options.draw_debug_pulses = True

    return options