[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "c47scene"
version = "0.1.0"
description = "Read, edit and write Hitman: Codename 47 scene archives: chunk trees, object trees, DBL property lists, audio and pathfinding data"
requires-python = ">=3.10"
dependencies = []
keywords = ["hitman", "c47", "scene", "spk", "chunk", "game-modding"]
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
    "Topic :: Games/Entertainment",
    "Topic :: File Formats",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["c47scene"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
