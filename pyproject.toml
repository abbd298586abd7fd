[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pprofkit"
version = "0.1.0"
description = "Performance profile model with string-table encoding, memory map parsing, filtering, merging and symbolz symbolization"
requires-python = ">=3.10"
dependencies = []
keywords = ["profiling", "pprof", "performance", "profile", "symbolization", "memory map"]
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
    "Topic :: Software Development :: Debuggers",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pprofkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
