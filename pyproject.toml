[build-system]
requires = ["setuptools>=68", "wheel"]
build-backend = "setuptools.build_meta"

[project]
name = "cogito"
version = "0.1.0"
description = "Event-sourced workflow run state machine with replay and checkpoints"
requires-python = ">=3.10"
dependencies = []
keywords = ["workflow", "event-sourcing", "state-machine", "replay", "checkpoint"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["cogito*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
