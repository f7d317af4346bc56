[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pykqueue"
version = "2.6.1"
description = "A user-space kqueue-style event notification core: kevents, filters, knotes and queue descriptors"
requires-python = ">=3.10"
dependencies = []
keywords = ["kqueue", "kevent", "events", "notification", "filters"]
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
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["pykqueue"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
