[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vsdb"
version = "0.1.0"
description = "Disk-backed raw key-value maps, an in-memory paged slot index and a trie node codec"
requires-python = ">=3.10"
keywords = ["database", "key-value", "storage", "sqlite", "index", "pagination", "trie"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Database :: Database Engines/Servers",
    "Topic :: Software Development :: Libraries :: Python Modules",
    "Typing :: Typed",
]
dependencies = [
    "sortedcontainers",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["vsdb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
