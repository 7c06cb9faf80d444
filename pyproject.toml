[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "modbridge"
version = "0.1.0"
description = "Modbus RTU/ASCII framing utilities and a request-forwarding Modbus bridge"
requires-python = ">=3.10"
dependencies = []
keywords = ["modbus", "rtu", "ascii", "crc16", "lrc", "bridge", "serial"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["modbridge"]

[tool.pytest.ini_options]
addopts = "-ra"
