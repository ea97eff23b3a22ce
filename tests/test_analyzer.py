import math

import numpy as np
import pytest

from drspulse.analyzer import DRSAnalyzer
from drspulse.config import Configuration

NAME = "DRS_Board0_Group0_Channel0"
OTHER = "DRS_Board0_Group0_Channel1"
N_SAMPLES = 900


def make_config(*lines):
    config = Configuration()
    for line in lines:
        config.parse_line(line)
    return config


def pulse(amplitude=-100.0, center=100.0, sigma=2.0, offset=10.0):
    t = 0.2 * np.arange(N_SAMPLES)
    return offset + amplitude * np.exp(-0.5 * ((t - center) / sigma) ** 2)


def make_analyzer(config, names=(NAME,)):
    analyzer = DRSAnalyzer(config)
    analyzer.init_loop(list(names))
    return analyzer


STANDARD = "0 + 0.05 0.2 0 0 LP2+Re15-75+G40 0"


def run_standard(**kwargs):
    analyzer = make_analyzer(make_config(STANDARD))
    return analyzer.analyze({NAME: pulse(**kwargs)}), analyzer


def test_init_loop_creates_variables():
    analyzer = make_analyzer(make_config(STANDARD))
    assert analyzer.num_samples == N_SAMPLES
    assert analyzer.time[1] == pytest.approx(0.2)
    for suffix in ("amp", "LP2_15", "LP2_30", "LP2_45", "gaus_mean", "linear_RE_30"):
        assert analyzer.var[f"{NAME}_{suffix}"] == pytest.approx(-999.9)


def test_init_loop_single_precision_percent_labels():
    config = make_config("ConstantFraction x 29", "ConstantThreshold x -20", STANDARD)
    analyzer = make_analyzer(config)
    assert f"{NAME}_LP2_29" in analyzer.var
    assert f"{NAME}_LP2_20mV" in analyzer.var
    assert f"{NAME}_linear_RE__20mV" in analyzer.var


def test_reset_var_zeroes_everything():
    _, analyzer = run_standard()
    analyzer.reset_var()
    assert set(analyzer.var.values()) == {0.0}


def test_amplitude_peak_and_baseline():
    result, _ = run_standard()
    assert result[f"{NAME}_amp"] == pytest.approx(100.0)
    assert result[f"{NAME}_t_peak"] == pytest.approx(100.0)
    assert result[f"{NAME}_baseline"] == pytest.approx(10.0)
    assert result[f"{NAME}_baseline_RMS"] == pytest.approx(0.0, abs=1e-9)


def test_integrals():
    result, _ = run_standard()
    expected = 100.0 * 2.0 * math.sqrt(2 * math.pi)
    assert result[f"{NAME}_intfull"] == pytest.approx(expected, rel=1e-3)
    assert 0 < result[f"{NAME}_integral"] <= result[f"{NAME}_intfull"] + 1e-6


def test_local_polynomial_timestamps_ordered():
    result, _ = run_standard()
    lp15, lp30, lp45 = (result[f"{NAME}_LP2_{p}"] for p in (15, 30, 45))
    assert lp15 < lp30 < lp45 < result[f"{NAME}_t_peak"]
    expected_45 = 100.0 - 2.0 * math.sqrt(2 * math.log(1 / 0.45))
    assert lp45 == pytest.approx(expected_45, abs=0.2)


def test_gaussian_fit_recovers_pulse():
    result, _ = run_standard()
    assert result[f"{NAME}_gaus_mean"] == pytest.approx(100.0, abs=0.05)
    assert abs(result[f"{NAME}_gaus_sigma"]) == pytest.approx(2.0, rel=0.05)
    assert result[f"{NAME}_gaus_chi2"] >= 0


def test_rising_edge_and_rise_time():
    result, _ = run_standard()
    re15, re30, re45 = (result[f"{NAME}_linear_RE_{p}"] for p in (15, 30, 45))
    assert re15 < re30 < re45 < result[f"{NAME}_t_peak"]
    assert result[f"{NAME}_risetime"] > 0


def test_threshold_lies_between_fractions():
    config = make_config("ConstantThreshold x -20", STANDARD)
    analyzer = make_analyzer(config)
    result = analyzer.analyze({NAME: pulse()})
    assert result[f"{NAME}_LP2_15"] < result[f"{NAME}_LP2_20mV"] < result[f"{NAME}_LP2_30"]


def test_negative_polarity_inverts_pulse():
    reference, _ = run_standard()
    analyzer = make_analyzer(make_config("0 - 0.05 0.2 0 0 LP2+Re15-75+G40 0"))
    result = analyzer.analyze({NAME: pulse(amplitude=100.0)})
    assert result[f"{NAME}_amp"] == pytest.approx(reference[f"{NAME}_amp"])
    assert result[f"{NAME}_baseline"] == pytest.approx(-reference[f"{NAME}_baseline"])


def test_automatic_polarity_switch():
    config = make_config("0 +. 0.05 0.2 0 0 LP2 0")
    analyzer = make_analyzer(config)
    result = analyzer.analyze({NAME: pulse(amplitude=100.0)})
    assert result[f"{NAME}_amp"] == pytest.approx(100.0)
    assert config.channels[0].polarity == -1
    assert config.channels[0].counter_auto_pol_switch == 2


def test_unconfigured_channel_left_at_zero():
    analyzer = make_analyzer(make_config(STANDARD), names=(NAME, OTHER))
    result = analyzer.analyze({NAME: pulse(), OTHER: pulse()})
    assert result[f"{OTHER}_amp"] == 0.0
    assert result[f"{NAME}_amp"] == pytest.approx(100.0)


def test_none_algorithm_skips_fits():
    analyzer = make_analyzer(make_config("0 + 0.05 0.2 0 0 None 0"))
    result = analyzer.analyze({NAME: pulse()})
    assert result[f"{NAME}_amp"] == pytest.approx(100.0)
    assert result[f"{NAME}_integral"] == 0.0


def test_harmonic_noise_removal_recovers_baseline():
    t = 0.2 * np.arange(N_SAMPLES)
    waveform = pulse() + 40.0 * np.sin(1.0 + 2 * math.pi / 75.0 * t)
    analyzer = make_analyzer(make_config("0 + 0.05 0.2 0 0 HNR+LP2 0"))
    result = analyzer.analyze({NAME: waveform})
    assert result[f"{NAME}_baseline"] == pytest.approx(10.0, abs=1e-3)
    assert result[f"{NAME}_amp"] == pytest.approx(100.0, abs=1e-3)


def test_short_baseline_warns(capsys):
    analyzer = make_analyzer(make_config("0 + 0.1 0.1 0 0 LP2 0"))
    analyzer.analyze({NAME: pulse()})
    assert "Baseline window is trivially short" in capsys.readouterr().out


def test_baseline_values_recorded():
    config = make_config(STANDARD)
    analyzer = make_analyzer(config)
    for _ in range(3):
        analyzer.analyze({NAME: pulse()})
    assert config.channels[0].v_baseline == pytest.approx([10.0, 10.0, 10.0])


def test_short_waveform_rejected():
    analyzer = make_analyzer(make_config(STANDARD))
    with pytest.raises(ValueError):
        analyzer.analyze({NAME: pulse()[:100]})


def test_analyze_requires_init_loop():
    analyzer = DRSAnalyzer(make_config(STANDARD))
    with pytest.raises(RuntimeError):
        analyzer.analyze({NAME: pulse()})


def test_process_events_honours_start_event():
    analyzer = DRSAnalyzer(make_config(STANDARD), start_evt=1)
    events = [{"event_id": k, NAME: pulse()} for k in range(3)]
    records = list(analyzer.process_events(events))
    assert [r["event_id"] for r in records] == [1, 2]
    assert analyzer.event_n == 2
    assert all(r[f"{NAME}_amp"] == pytest.approx(100.0) for r in records)


def test_process_events_honours_event_limit():
    analyzer = DRSAnalyzer(make_config(STANDARD), n_evts=2)
    events = [{"event_id": k, NAME: pulse()} for k in range(4)]
    records = list(analyzer.process_events(events))
    assert [r["event_id"] for r in records] == [0, 1]