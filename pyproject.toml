[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "meshbus"
version = "0.1.0"
description = "Lightweight publish/subscribe and request/response middleware over TCP and UDP with multicast peer discovery"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "middleware",
    "pubsub",
    "publish-subscribe",
    "rpc",
    "service",
    "tcp",
    "udp",
    "multicast",
    "discovery",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
meshbus-examples = "meshbus.examples:main"

[tool.hatch.build.targets.wheel]
packages = ["meshbus"]

[tool.hatch.build.targets.sdist]
include = ["meshbus", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
