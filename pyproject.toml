[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rdplink"
version = "0.1.0"
description = "Connection layers of a Remote Desktop Protocol client: TPKT, X.224, MCS, GCC, BER and PER encoding"
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = ["rdp", "remote desktop", "t125", "t124", "mcs", "x224", "tpkt", "gcc", "ber", "per"]
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
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["rdplink"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
