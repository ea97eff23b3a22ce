"""Per-event pulse analysis of digitized waveforms.

For every configured channel the waveform is baseline-subtracted and scaled
to mV, and a set of observables is extracted: amplitude, peak time,
integrals, rise and decay times, and timestamps from gaussian, rising-edge
linear and local polynomial fits.
"""

from __future__ import annotations

import math
import re
import warnings
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Mapping, Sequence

import numpy as np
from scipy.optimize import OptimizeWarning, curve_fit

from drspulse.config import ChannelConfig, Configuration
from drspulse.numerics import (
    idx_first_cross,
    poly_eval,
    polynomial_fit,
    pulse_integral,
)

CHANNEL_PATTERN = re.compile(r"^DRS_Board[0-9]+_Group[0-9]+_Channel[0-9]+$")

BASE_VAR_NAMES = (
    "baseline",
    "baseline_RMS",
    "noise",
    "amp",
    "t_peak",
    "integral",
    "intfull",
    "risetime",
    "decaytime",
)

_UINT = 2**32
_SAMPLE_PERIOD = 200.0 / 1000.0
_DEFAULT_SAMPLES = 900
_UNSET = -999.9


def _usub(a: int, b: int) -> int:
    """Difference of two indices with unsigned 32-bit wrap-around."""
    return (a - b) % _UINT


def _percent(fraction: float) -> int:
    """Integer percentage label of a fraction, computed in single precision."""
    return int(np.float32(100.0) * np.float32(fraction))


def _div(a: float, b: float) -> float:
    if b:
        return a / b
    if a == 0 or math.isnan(a):
        return math.nan
    return math.copysign(math.inf, a) * math.copysign(1.0, b)


def _harmonic(x, const, amplitude, phi0, omega):
    return const + amplitude * np.sin(phi0 + omega * x)


def _gauss(x, constant, mean, sigma):
    return constant * np.exp(-0.5 * ((x - mean) / sigma) ** 2)


def _fit(func: Callable, x: np.ndarray, y: np.ndarray, p0: Sequence[float]) -> np.ndarray:
    """Least-squares fit; the starting parameters are kept when the fit fails."""
    start = np.asarray(p0, dtype=float)
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", OptimizeWarning)
            warnings.simplefilter("ignore", RuntimeWarning)
            params, _ = curve_fit(func, x, y, p0=start, maxfev=10000)
    except (RuntimeError, ValueError, TypeError):
        return start
    if not np.all(np.isfinite(params)):
        return start
    return params


@dataclass
class DRSAnalyzer:
    """Extracts pulse observables from the channels of each event."""

    config: Configuration
    num_channels: int = 999
    num_times: int = 999
    num_samples: int = 999
    dac_resolution: int = 1
    dac_scale: float = 1.0
    scale_minimum: float = -500.0
    n_warnings_to_print: int = 15
    n_evts: int = 0
    start_evt: int = 0
    n_evt_expected: int = -1
    verbose: bool = False
    save_raw: bool = False
    save_meas: bool = False
    draw_debug_pulses: bool = False
    correct_for_time_offsets: bool = False
    img_format: str = ".png"
    n_warnings: int = field(default=0, init=False)
    event_n: int = field(default=0, init=False)
    time: np.ndarray = field(default_factory=lambda: np.zeros(0), init=False)
    channel_names: list[str] = field(default_factory=list, init=False)
    var_names: list[str] = field(default_factory=lambda: list(BASE_VAR_NAMES), init=False)
    var: dict[str, float] = field(default_factory=dict, init=False)

    # ------------------------------------------------------------------ setup

    def init_loop(self, channel_names: Iterable[str]) -> None:
        """Prepare the sampling times and the output variables of every channel."""
        self.channel_names = sorted(channel_names)
        self.num_channels = len(self.channel_names)
        print(f"Number of Channels: {self.num_channels}")
        self.num_times = 0
        self.num_samples = _DEFAULT_SAMPLES
        self.time = _SAMPLE_PERIOD * np.arange(self.num_samples, dtype=float)

        channels = self.config.channels.values()
        any_gauss = any("G" in c.algorithm for c in channels)
        any_edge = any("Re" in c.algorithm for c in channels)
        any_lp = [any(f"LP{deg}" in c.algorithm for c in channels) for deg in (1, 2, 3)]

        names = list(BASE_VAR_NAMES)
        for deg, wanted in zip((1, 2, 3), any_lp):
            if wanted:
                names += [f"LP{deg}_{_percent(f)}" for f in self.config.constant_fraction]
                names += [f"LP{deg}_{int(abs(t))}mV" for t in self.config.constant_threshold]
        if any_gauss:
            names += ["gaus_mean", "gaus_sigma", "gaus_chi2"]
        if any_edge:
            names += [f"linear_RE_{_percent(f)}" for f in self.config.constant_fraction]
            names += [f"linear_RE__{int(abs(t))}mV" for t in self.config.constant_threshold]
        self.var_names = names

        self.var = {
            f"{channel}_{name}": _UNSET
            for channel in self.channel_names
            for name in self.var_names
        }

    def reset_var(self) -> None:
        """Set every output variable of every channel to zero."""
        for channel in self.channel_names:
            for name in self.var_names:
                self.var[f"{channel}_{name}"] = 0.0

    # --------------------------------------------------------------- analysis

    def analyze(self, channels: Mapping[str, Sequence[float]]) -> dict[str, float]:
        """Analyze one event and return the output variables."""
        if self.time.size == 0:
            raise RuntimeError("init_loop must be called before analyze")
        self.reset_var()
        i = 0
        for name in sorted(channels):
            # Channels are numbered in name order; an unconfigured number stops the count.
            if not self.config.has_channel(i):
                continue
            self._analyze_channel(f"{name}_", i, channels[name])
            i += 1
        return dict(self.var)

    def process_events(
        self, events: Iterable[Mapping[str, object]]
    ) -> Iterator[dict[str, object]]:
        """Analyze events in order, yielding each event's branches with the results."""
        for index, event in enumerate(events):
            if index < self.start_evt:
                continue
            if self.n_evts and index >= self.n_evts:
                break
            channels = {k: v for k, v in event.items() if CHANNEL_PATTERN.match(k)}
            if self.time.size == 0:
                self.init_loop(channels)
            if index % 500 == 0:
                print(f"Processing Event {index}")
            results = self.analyze(channels)
            record = dict(event)
            record.update(results)
            self.event_n += 1
            yield record

    # ---------------------------------------------------------------- helpers

    def _warn_below_noise(self, message: str) -> None:
        if self.n_warnings < self.n_warnings_to_print:
            self.n_warnings += 1
            print(message)
        elif self.n_warnings == self.n_warnings_to_print:
            self.n_warnings += 1
            print("[WARNING] Max number of warnings passed. No more warnings will be printed.")

    def _analyze_channel(self, prefix: str, i: int, waveform: Sequence[float]) -> None:
        n = self.num_samples
        time = self.time
        channel = np.asarray(waveform, dtype=float)[:n].copy()
        if channel.size < n:
            raise ValueError(
                f"channel {prefix[:-1]} has {channel.size} samples, {n} are needed"
            )
        cfg: ChannelConfig = self.config.channels[i]
        var = self.var

        scale = (self.dac_scale / float(self.dac_resolution)) * (
            self.config.channel_multiplication_factor(i)
        )

        bl_st = int(cfg.baseline_time[0] * n)
        bl_en = int(cfg.baseline_time[1] * n)
        if bl_en < bl_st:
            raise ValueError(f"baseline window of channel {i} ends before it starts")
        if bl_en >= n or bl_st + 5 >= n:
            raise ValueError(f"baseline window of channel {i} exceeds the waveform")
        bl_len = bl_en - bl_st

        baseline_sum = float(np.sum(channel[bl_st:bl_en]))
        if bl_len <= 1:
            print("WARNING: Baseline window is trivially short, probably configured incorrectly")
        baseline = _div(baseline_sum, bl_len)

        hnr = "HNR" in cfg.algorithm
        if hnr:
            p0 = [baseline, _div(40.0, scale), 1.0, 2 * math.pi / 75.0]
            params = _fit(_harmonic, time[bl_st:bl_en], channel[bl_st:bl_en], p0)
            if self.draw_debug_pulses:
                print("Harmonic Noise Removal:")
                print(f"const = {params[0] * scale:.2f}")
                print(f"A = {params[1] * scale:.2f}")
                print(f"phi_0 = {params[2]:.2f}")
                print(f"T = {_div(2 * math.pi, params[3]):.2f}")
            baseline = float(params[0])
            reference = _harmonic(time, *params)
        else:
            reference = baseline

        if len(cfg.v_baseline) < 800:
            cfg.v_baseline.append(baseline)
        var[prefix + "baseline"] = scale * baseline

        channel = scale * (channel - reference)

        idx_min = 0
        amp = 0.0
        auto_switch = cfg.counter_auto_pol_switch > 0
        for j, value in enumerate(channel):
            value = float(value)
            if auto_switch:
                max_check = abs(value) > abs(amp)
            else:
                max_check = value < amp
            if (j > bl_en and max_check) or j == bl_en:
                idx_min = j
                amp = value

        var[prefix + "t_peak"] = float(time[idx_min])
        var[prefix + "amp"] = -amp
        var[prefix + "noise"] = float(channel[bl_st + 5])
        rms = math.sqrt(_div(float(np.sum(channel[bl_st:bl_en + 1] ** 2)), bl_len))
        var[prefix + "baseline_RMS"] = rms

        fittable = (
            2 <= idx_min < int(n * 0.8)
            and abs(amp) > 5 * rms
            and abs(channel[idx_min + 1]) > 2 * rms
            and abs(channel[idx_min - 1]) > 2 * rms
            and abs(channel[idx_min + 2]) > rms
            and abs(channel[idx_min - 2]) > rms
        )
        if not fittable or "None" in cfg.algorithm:
            return

        if var[prefix + "amp"] < 0 and cfg.counter_auto_pol_switch > 0:
            cfg.polarity *= -1
            amp = -amp
            var[prefix + "amp"] = -var[prefix + "amp"]
            var[prefix + "baseline"] = -var[prefix + "baseline"]
            channel = -channel
            if cfg.counter_auto_pol_switch == 10:
                print(f"[WARNING] Channel {i}: automatic polarity switched more than 10 times")
                print(
                    f"[WARNING] Channel {i}: gonna keep inverting it for you. "
                    "Better check your pulse polarity!!"
                )
            cfg.counter_auto_pol_switch += 1

        def cross(value: float, start: int, direction: int) -> int:
            return idx_first_cross(value, channel, start, direction, n)

        j_10_pre = cross(amp * 0.1, idx_min, -1)
        j_10_post = cross(amp * 0.1, idx_min, +1)

        j_area_pre = cross(amp * 0.05, idx_min, -1)
        j_area_post = cross(0.0, idx_min, +1)
        var[prefix + "integral"] = pulse_integral(channel, time, j_area_pre, j_area_post)
        var[prefix + "intfull"] = pulse_integral(channel, time, 5, n - 5)

        j_90_pre = cross(amp * 0.9, j_10_pre, +1)
        coeff = polynomial_fit(time[j_10_pre:j_90_pre + 1], channel[j_10_pre:j_90_pre + 1], 1)
        var[prefix + "risetime"] = abs(_div(0.8 * var[prefix + "amp"], coeff[1]))

        j_90_post = cross(amp * 0.9, j_10_post, -1)
        coeff = polynomial_fit(
            time[j_90_post:j_10_post + 1], channel[j_90_post:j_10_post + 1], 1
        )
        var[prefix + "decaytime"] = coeff[1]

        time_offset = 0.0

        if "G" in cfg.algorithm:
            frac = cfg.gaus_fraction
            j_down = cross(amp * frac, idx_min, -1)
            j_up = cross(amp * frac, idx_min, +1)
            if _usub(j_up, j_down) < 4:
                j_up = idx_min + 1
                j_down = idx_min - 1
            ext_sigma = float(time[j_up] - time[j_down])
            if amp * frac < -rms:
                ext_sigma *= 0.25
            p0 = [amp * math.sqrt(2 * 3.14) * ext_sigma, float(time[idx_min]), ext_sigma]
            mask = (time >= time[j_down]) & (time <= time[j_up])
            params = _fit(_gauss, time[mask], channel[mask], p0)
            var[prefix + "gaus_mean"] = float(params[1]) + time_offset
            var[prefix + "gaus_sigma"] = float(params[2])
            residuals = channel[mask] - _gauss(time[mask], *params)
            var[prefix + "gaus_chi2"] = float(np.sum(residuals**2))

        if "Re" in cfg.algorithm:
            i_lo = cross(cfg.re_bounds[0] * amp, idx_min, -1)
            i_hi = cross(cfg.re_bounds[1] * amp, i_lo, +1)
            mask = (time >= time[i_lo]) & (time <= time[i_hi])
            try:
                intercept, slope = polynomial_fit(time[mask], channel[mask], 1)
            except ValueError:
                intercept, slope = 0.0, 0.0
            for f in self.config.constant_fraction:
                var[prefix + f"linear_RE_{_percent(f)}"] = (
                    _div(f * amp - intercept, slope) + time_offset
                )
            for thr in self.config.constant_threshold:
                var[prefix + f"linear_RE__{int(abs(thr))}mV"] = (
                    _div(thr - intercept, slope) + time_offset
                )

        start_level = -3 * rms
        if self.config.constant_fraction:
            j_start = cross(start_level, idx_min, -1)
            for f in self.config.constant_fraction:
                j_st = j_start
                if amp * f > start_level:
                    if amp * f > -rms and self.verbose:
                        self._warn_below_noise(
                            f"[WARNING] ev:{self.event_n} ch:{i} - fraction {f:.2f} "
                            "below noise RMS"
                        )
                    j_st = cross(amp * f, idx_min, -1)
                self._local_fits(
                    channel, cfg, i, amp * f, j_st, j_90_pre, j_10_pre,
                    lambda deg, f=f: prefix + f"LP{deg}_{_percent(f)}",
                    always_warn=True,
                )

        if self.config.constant_threshold:
            j_start = cross(start_level, idx_min, -1)
            for thr in self.config.constant_threshold:
                if thr < amp:
                    continue
                j_st = j_start
                if thr > start_level:
                    if thr > -rms and self.verbose:
                        self._warn_below_noise(
                            f"[WARNING] ev:{self.event_n} ch:{i} - thr {thr:.2f} mV "
                            "below noise RMS"
                        )
                    j_st = cross(thr, idx_min, -1)
                self._local_fits(
                    channel, cfg, i, thr, j_st, j_90_pre, j_10_pre,
                    lambda deg, thr=thr: prefix + f"LP{deg}_{int(abs(thr))}mV",
                    always_warn=False,
                )

    def _local_fits(
        self,
        channel: np.ndarray,
        cfg: ChannelConfig,
        i: int,
        level: float,
        j_st: int,
        j_90_pre: int,
        j_10_pre: int,
        key: Callable[[int], str],
        always_warn: bool,
    ) -> None:
        """Fit time against amplitude around the crossing of ``level``."""
        n = self.num_samples
        time = self.time
        j_close = idx_first_cross(level, channel, j_st, +1, n)
        if j_close > 0 and abs(channel[j_close - 1] - level) < abs(channel[j_close] - level):
            j_close -= 1

        for deg in cfg.pl_deg:
            span = int(min(_usub(j_90_pre, j_close), _usub(j_close, j_st)) / 1.5)
            if _usub(j_90_pre, j_10_pre) <= 3 * deg:
                span = max(int(deg * 0.5), span)
                span = max(1, span)
            else:
                span = max(deg, span)

            if j_close < span or j_close + span >= n:
                if always_warn or self.verbose:
                    print(
                        f"[WARNING] evt {self.event_n} ch {i}:  Short span around the "
                        "closest point. Analytical fit not performed."
                    )
                    if not always_warn:
                        print(f"{j_close}  {span}  {level:g}")
                continue

            n_add = 2 if span + 1 + j_close < j_90_pre else 1
            lo = j_close - span
            hi = lo + 2 * span + n_add
            try:
                coeff = polynomial_fit(channel[lo:hi], time[lo:hi], deg)
            except ValueError:
                print("[WARNING]: Not enough points for requested polynomial degree")
                continue
            self.var[key(deg)] = poly_eval(level, coeff, deg)