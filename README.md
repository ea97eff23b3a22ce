# drspulse

Analysis of digitized pulses recorded with a DRS waveform digitizer.
For every configured channel of an event it measures the baseline,
baseline RMS, noise, amplitude, peak time, pulse and full integrals, rise
and decay times and, depending on the channel's algorithm, timing
estimators from a Gaussian peak fit, a linear fit of the rising edge and
local polynomial fits at constant fractions or constant thresholds.

## Configuration file

A configuration file is plain text; lines starting with `#` are ignored.

```
# fractions in percent of the amplitude
ConstantFraction 15 30 45
# thresholds in mV
ConstantThreshold -20 -40
# DUT z positions in mm
z_DUT -50 50
# CH  POLARITY  BL_START  BL_STOP  AMPLIFICATION  ATTENUATION  ALGORITHM  FILTER_WIDTH
0     -         0.0       0.15     0              0            Re15-75+LP2  0
1     +.        0.0       0.15     0              0            G40+LP1      0
```

- The word after `ConstantFraction`, `ConstantThreshold` or `z_DUT` is
  taken as the first value-less label only when written as a separate
  token; values are all tokens after the keyword. Without these lines the
  defaults are fractions 0.15, 0.3, 0.45, no thresholds and z_DUT -50, 50.
- `POLARITY` is `+` or `-`; adding a `.` allows the polarity to be switched
  automatically when the pulse turns out to be inverted.
- `BL_START` and `BL_STOP` give the baseline window as fractions of the
  record length.
- `ALGORITHM` combines, with `+`, any of `G##` (Gaussian fit down to ##% of
  the amplitude, default 40%), `Re##-##` (linear rising-edge fit between
  the two fractions, default 15-75), `LP1`, `LP2`, `LP3` (local polynomial
  of that degree), `HNR` (sinusoidal fit of the baseline, subtracted from
  the waveform) and `None` (no timing fits).
- The attenuation column is read, but the stored attenuation takes the
  amplification value, so the two gain terms of
  `channel_multiplication_factor` cancel and the factor is the polarity.
- `FILTER_WIDTH` must be `0`.

An invalid polarity, swapped rising-edge bounds, a `Baseline` line, a
non-zero filter width, an incomplete channel line or an unreadable file
raise `drspulse.config.ConfigurationError`.

```python
from drspulse.config import load_configuration

config = load_configuration("config.txt", False)
config.is_valid()                          # True when at least one channel is set up
config.has_channel(0)                      # True
config.channel_multiplication_factor(0)    # -1.0 for the "-" channel above
config.channels[0].pl_deg                  # [2]
```

`Configuration.parse_line(line)` applies a single line, so a configuration
can also be built up in code from `Configuration()`.

## Analysing events

`drspulse.analyzer.DRSAnalyzer` is created with a `Configuration` and holds
the per-channel output variables.

- `init_loop(channel_names)` declares the waveform channels (for example
  `DRS_Board0_Group0_Channel0`), fixes the record at 900 samples spaced by
  0.2 ns, and builds the output variables, all named
  `<channel>_<variable>` and set to -999.9.
- `analyze(channels)` analyses one event, given as a mapping from channel
  name to at least 900 samples, and returns the output variables.
  Channels are taken in name order and numbered from 0; the number is
  matched against the configuration, and from the first number that is
  not configured on no further channel is analysed.
- `process_events(events)` takes an iterable of event mappings, picks the
  entries whose names match `DRS_Board<n>_Group<n>_Channel<n>` as
  waveforms, calls `init_loop` on the first event if needed, skips events
  before `start_evt`, stops at event index `n_evts` when that is non-zero,
  and yields each event's entries together with its results.
- `reset_var()` sets every output variable to zero.

With `verbose` set, warnings about fractions or thresholds below the noise
are printed, at most `n_warnings_to_print` of them. `draw_debug_pulses`
only prints the parameters of the `HNR` baseline fit.

## Numerical helpers

`drspulse.numerics` holds the building blocks of the analysis:

```python
from drspulse.numerics import polynomial_fit, poly_eval

coeff = polynomial_fit([0.0, 1.0, 2.0, 3.0], [1.0, 3.0, 5.0, 7.0], 1)  # about [1.0, 2.0]
poly_eval(4.0, coeff, 1)                                               # about 9.0
```

- `polynomial_fit(x, y, deg)` fits degree 1 to 3 by Cholesky-solved normal
  equations; a singular system gives all-zero coefficients.
- `pulse_integral(a, t, i_start, i_stop)` is the negated Simpson integral
  with the correction for uneven spacing.
- `idx_first_cross` and `idx_closest` search a waveform from a start index
  forwards (`+1`) or backwards (`-1`) for a level.
- `ws_interp(t, n, tn, cn)` evaluates a sinc interpolation of the first
  `n` samples.

## Command-line options

`drspulse.cli.get_command_line_args(argv)` reads options of the form
`--input_file=...`, `--output_file=...`, `--config=...`, `--N_evts=...`,
`--start_evt=...`, `--N_evt_expected=...`, `--verbose`, `--save_raw`,
`--correctForTimeOffsets` and `--draw_debug_pulses[=format]` into a
`RunOptions` object, loading the configuration file on the way.
`parse_command_line(argv, opt)` returns the value of a single option, or
`""` when it is not given.

## What the package does not do

There is no installed command. The package does not read or write event
files: events go in as Python mappings and results come back as
dictionaries, and the input and output paths in `RunOptions` are only
recorded. It draws and saves no pulse images, and the Weierstrass filter is
not available.