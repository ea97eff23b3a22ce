import pytest

from drspulse.config import (
    ChannelConfig,
    Configuration,
    ConfigurationError,
    load_configuration,
)

SAMPLE = """# comment line
ConstantFraction label 20 50
ConstantThreshold label -20 -40
z_DUT label -10 10

0 + 0.02 0.15 0 0 Re20-80+G50+LP1+LP3 0
3 -. 0.01 0.10 6 6 None 0
"""


@pytest.fixture
def config(tmp_path):
    path = tmp_path / "config.txt"
    path.write_text(SAMPLE)
    return load_configuration(path, False)


def test_defaults_from_source():
    cfg = Configuration()
    assert cfg.constant_fraction == [0.15, 0.3, 0.45]
    assert cfg.constant_threshold == []
    assert cfg.z_DUT == [-50.0, 50.0]
    assert cfg.is_valid() is False


def test_channel_defaults():
    ch = ChannelConfig()
    assert ch.gaus_fraction == 0.4
    assert ch.re_bounds == [0.15, 0.75]
    assert ch.polarity == 1
    assert ch.counter_auto_pol_switch == -1


def test_global_lists(config):
    assert config.constant_fraction == pytest.approx([0.2, 0.5])
    assert config.constant_threshold == [-20.0, -40.0]
    assert config.z_DUT == [-10.0, 10.0]


def test_channels_present(config):
    assert sorted(config.channels) == [0, 3]
    assert config.has_channel(0)
    assert config.has_channel(3)
    assert not config.has_channel(1)
    assert config.is_valid()


def test_channel_zero_settings(config):
    ch = config.channels[0]
    assert ch.n == 0
    assert ch.polarity == 1
    assert ch.counter_auto_pol_switch == -1
    assert ch.baseline_time == pytest.approx([0.02, 0.15])
    assert ch.algorithm == "Re20-80+G50+LP1+LP3"
    assert ch.re_bounds == pytest.approx([0.2, 0.8])
    assert ch.gaus_fraction == pytest.approx(0.5)
    assert ch.pl_deg == [1, 3]


def test_channel_three_settings(config):
    ch = config.channels[3]
    assert ch.polarity == -1
    assert ch.counter_auto_pol_switch == 1
    assert ch.pl_deg == []
    assert ch.amplification == 6.0
    assert ch.attenuation == ch.amplification


def test_multiplication_factor_follows_polarity(config):
    assert config.channel_multiplication_factor(0) == pytest.approx(1.0)
    assert config.channel_multiplication_factor(3) == pytest.approx(-1.0)


def test_multiplication_factor_missing_channel_is_neutral(config):
    assert config.channel_multiplication_factor(7) == pytest.approx(1.0)
    assert not config.has_channel(7)


def test_comment_and_empty_lines_ignored():
    cfg = Configuration()
    cfg.parse_line("# 1 + 0 0 0 0 G 0")
    cfg.parse_line("")
    cfg.parse_line("something else")
    assert cfg.channels == {}


def test_missing_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_configuration(tmp_path / "missing.txt", False)


def test_baseline_line_rejected():
    with pytest.raises(ConfigurationError):
        Configuration().parse_line("Baseline 10 100")


def test_invalid_polarity():
    with pytest.raises(ConfigurationError):
        Configuration().parse_line("1 x 0 0.1 0 0 G 0")


def test_swapped_rising_edge_bounds():
    with pytest.raises(ConfigurationError):
        Configuration().parse_line("1 + 0 0.1 0 0 Re80-20 0")


def test_filter_width_not_supported():
    with pytest.raises(ConfigurationError):
        Configuration().parse_line("1 + 0 0.1 0 0 G 2")


def test_incomplete_channel_line():
    with pytest.raises(ConfigurationError):
        Configuration().parse_line("1 + 0 0.1")


def test_non_numeric_value():
    with pytest.raises(ConfigurationError):
        Configuration().parse_line("ConstantThreshold label abc")


def test_later_channel_line_replaces_earlier():
    cfg = Configuration()
    cfg.parse_line("2 + 0 0.1 0 0 LP2 0")
    cfg.parse_line("2 - 0 0.1 0 0 LP1 0")
    assert cfg.channels[2].polarity == -1
    assert cfg.channels[2].pl_deg == [1]


def test_verbose_output(capsys):
    cfg = Configuration(verbose=True)
    cfg.parse_line("5 + 0 0.1 0 0 G 0")
    out = capsys.readouterr().out
    assert "[CONFIG] Channel 5 activated" in out
    assert "Algorithm: G" in out