[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "ballotbox"
version = "0.1.0"
description = "Ranked-choice polls over a SQL database: registration, polling, voting sessions, Meek STV counting and BLT export."
requires-python = ">=3.10"
dependencies = []
keywords = ["voting", "polls", "ranked-choice", "stv", "meek", "blt", "election"]
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
    "Topic :: Office/Business :: Groupware",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["ballotbox*"]

[tool.pytest.ini_options]
addopts = "-ra"
