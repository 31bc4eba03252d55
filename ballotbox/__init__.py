"""Ranked-choice polls: registration, polling, voting sessions, Meek STV counting and BLT export."""

__version__ = "0.1.0"

__all__ = [
    "blt",
    "counting",
    "database",
    "domain",
    "errors",
    "polling",
    "registration",
    "voting",
]