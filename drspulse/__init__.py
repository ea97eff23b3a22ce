"""Pulse analysis of digitized DRS waveforms: configuration, numerics, per-event analysis and option parsing."""

__version__ = "0.1.0"