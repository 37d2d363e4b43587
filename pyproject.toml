[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rockusb"
version = "0.3.0"
description = "Rockchip USB protocol host implementation and boot file parser"
requires-python = ">=3.10"
dependencies = []
keywords = ["rockchip", "rockusb", "maskrom", "usb", "bootloader", "flashing", "embedded"]
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
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rockfile = "rockusb.bootfile_cli:main"

[tool.hatch.build.targets.wheel]
packages = ["rockusb"]

[tool.hatch.build.targets.sdist]
include = ["rockusb", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
