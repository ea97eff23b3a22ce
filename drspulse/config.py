"""Reading of the per-channel analysis configuration file.

Configuration lines (lines beginning with ``#`` are ignored)::

    ConstantFraction <label> <percent> <percent> ...
    ConstantThreshold <label> <mV> <mV> ...
    z_DUT <label> <mm> <mm> ...
    CH POLARITY BL_START BL_STOP AMPLIFICATION ATTENUATION ALGORITHM FILTER_WIDTH

``POLARITY`` is ``+`` or ``-``, optionally with a ``.`` to allow automatic
polarity switching. ``ALGORITHM`` is a ``+``-separated list of tags:
``G##`` (gaussian fit at ## percent), ``Re##-##`` (linear fit of the rising
edge between the two percentages) and ``LP1``..``LP3`` (local polynomial fit).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Iterator

_FLOAT_PREFIX = re.compile(
    r"\s*[+-]?(?:(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?|inf(?:inity)?|nan)",
    re.IGNORECASE,
)
_INT_PREFIX = re.compile(r"\s*[+-]?\d+")
_RISING_EDGE = re.compile(r"Re[0-9][0-9]-[0-9][0-9]")
_GAUSS = re.compile(r"G[0-9][0-9]")


class ConfigurationError(Exception):
    """Raised when a configuration file cannot be read or is invalid."""


def _to_float(token: str) -> float:
    match = _FLOAT_PREFIX.match(token)
    if match is None:
        raise ConfigurationError(f"Expected a number, got {token!r}")
    return float(match.group(0))


def _to_int(token: str) -> int:
    match = _INT_PREFIX.match(token)
    if match is None:
        raise ConfigurationError(f"Expected an integer, got {token!r}")
    return int(match.group(0))


def _fmt(value: float) -> str:
    return f"{value:g}"


@dataclass
class ChannelConfig:
    """Settings of one digitizer channel."""

    n: int = 0
    baseline_time: list[float] = field(default_factory=lambda: [0.0, 0.0])
    v_baseline: list[float] = field(default_factory=list)
    polarity: int = 1
    counter_auto_pol_switch: int = -1
    amplification: float = 0.0
    attenuation: float = 0.0
    algorithm: str = ""
    gaus_fraction: float = 0.4
    re_bounds: list[float] = field(default_factory=lambda: [0.15, 0.75])
    pl_deg: list[int] = field(default_factory=list)
    weierstrass_filter_width: float = 0.0


@dataclass
class Configuration:
    """Global analysis settings and per-channel settings."""

    verbose: bool = False
    channels: dict[int, ChannelConfig] = field(default_factory=dict)
    constant_fraction: list[float] = field(default_factory=lambda: [0.15, 0.3, 0.45])
    constant_threshold: list[float] = field(default_factory=list)
    z_DUT: list[float] = field(default_factory=lambda: [-50.0, 50.0])

    def _log(self, *parts: str, end: str = "\n") -> None:
        if self.verbose:
            print(*parts, end=end, flush=True)

    def _values_after_label(self, tokens: list[str]) -> list[float]:
        return [_to_float(tok) for tok in tokens[1:]]

    def parse_line(self, line: str) -> None:
        """Apply one line of a configuration file."""
        if line.startswith("#"):
            return
        tokens = [tok for tok in line.split(" ") if tok]

        if line.startswith("Baseline"):
            raise ConfigurationError("Baseline configured by channel now")
        if line.startswith("ConstantFraction"):
            self.constant_fraction = [0.01 * v for v in self._values_after_label(tokens)]
            self._log(
                "[CONFIG] ConstantFraction = {",
                *map(_fmt, self.constant_fraction),
                "}",
            )
        elif line.startswith("ConstantThreshold"):
            self.constant_threshold = self._values_after_label(tokens)
            self._log(
                "[CONFIG] ConstantThreshold = {",
                *map(_fmt, self.constant_threshold),
                "} [mV]",
            )
        elif line.startswith("z_DUT"):
            self.z_DUT = self._values_after_label(tokens)
            self._log("[CONFIG] z_DUT = {", *map(_fmt, self.z_DUT), "} [mm]")
        elif line[:1].isdigit() and line[:1] in "0123456789":
            channel = self._parse_channel(tokens)
            self.channels[channel.n] = channel

    def _parse_channel(self, tokens: list[str]) -> ChannelConfig:
        items: Iterator[str] = iter(tokens)

        def nxt() -> str:
            try:
                return next(items)
            except StopIteration:
                raise ConfigurationError("Incomplete channel line") from None

        ch = ChannelConfig()
        ch.n = _to_int(nxt())
        self._log(f"[CONFIG] Channel {ch.n} activated")

        polarity = nxt()
        if "." in polarity:
            ch.counter_auto_pol_switch = 1
            self._log("    Polarity switch allowed.")
        if "+" in polarity:
            ch.polarity = 1
            self._log("    Negative pulse set (+: straight)")
        elif "-" in polarity:
            ch.polarity = -1
            self._log("    Positive pulse set (-: inverse)")
        else:
            raise ConfigurationError(f"Invalid polarity for channel {ch.n}")

        ch.baseline_time[0] = _to_float(nxt())
        if ch.baseline_time[0]:
            self._log(f"    Baseline from time {_fmt(ch.baseline_time[0])}", end="")
        ch.baseline_time[1] = _to_float(nxt())
        if ch.baseline_time[1]:
            self._log(f" to time {_fmt(ch.baseline_time[1])}")

        amplification = _to_float(nxt())
        ch.amplification = amplification
        if amplification:
            self._log(f"    Amplification of {_fmt(amplification)} dB")

        attenuation = _to_float(nxt())
        # The stored attenuation mirrors the amplification value.
        ch.attenuation = amplification
        if attenuation:
            self._log(f"    Attenuation of {_fmt(attenuation)} dB")

        ch.algorithm = nxt()
        self._log(f"    Algorithm: {ch.algorithm}")
        edge = _RISING_EDGE.search(ch.algorithm)
        if edge is not None:
            text = edge.group(0)
            ch.re_bounds = [int(text[2:4]) / 100.0, int(text[5:7]) / 100.0]
            if ch.re_bounds[0] > ch.re_bounds[1]:
                raise ConfigurationError(
                    "Rising edge bounds in Config file wrong (maybe swapped?)"
                )
        gauss = _GAUSS.search(ch.algorithm)
        if gauss is not None:
            ch.gaus_fraction = int(gauss.group(0)[1:3]) / 100.0
        ch.pl_deg = [deg for deg in (1, 2, 3) if f"LP{deg}" in ch.algorithm]

        width = _to_float(nxt())
        ch.weierstrass_filter_width = width
        if width:
            self._log(f"    Weierstrass transform with filter width {_fmt(width)}")
            raise ConfigurationError("Weierstrass transform not implemented yet")
        return ch

    def channel_multiplication_factor(self, ch: int) -> float:
        """Overall multiplier from polarity, amplification and attenuation."""
        channel = self.channels.get(ch, ChannelConfig())
        out = float(channel.polarity)
        out *= 10 ** (-channel.amplification / 20.0)
        out *= 10 ** (channel.attenuation / 20.0)
        return out

    def has_channel(self, ch: int) -> bool:
        """Whether the channel is present in the configuration."""
        return ch in self.channels

    def is_valid(self) -> bool:
        """Whether at least one channel is configured."""
        return bool(self.channels)


def load_configuration(path: str | os.PathLike[str], verbose: bool = False) -> Configuration:
    """Read a configuration file into a :class:`Configuration`."""
    config = Configuration(verbose=verbose)
    try:
        handle = open(path, encoding="utf-8", newline="")
    except OSError as exc:
        raise ConfigurationError(f"Could not open configuration file {path}") from exc
    with handle:
        for raw in handle:
            config.parse_line(raw[:-1] if raw.endswith("\n") else raw)
    return config