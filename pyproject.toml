[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "drspulse"
version = "0.1.0"
description = "Per-channel pulse analysis of digitized DRS waveforms: baseline, amplitude, integrals, rise and decay times and timing estimators."
requires-python = ">=3.10"
dependencies = [
    "numpy",
    "scipy",
]
keywords = [
    "DRS4",
    "digitizer",
    "waveform",
    "pulse",
    "timing",
    "constant fraction",
    "particle physics",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Physics",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["drspulse"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
