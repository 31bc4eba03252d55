"""Election data and its export in the BLT ballot file format."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

DEFAULT_TITLE = "Election"


@dataclass
class BltBallot:
    """A ranking of candidate numbers, counted ``count`` times."""

    count: int = 1
    preferences: List[int] = field(default_factory=list)


@dataclass
class ElectionConfig:
    """Everything needed to count an election or write it out."""

    seats: int = 0
    candidates: List[str] = field(default_factory=list)
    ballots: List[BltBallot] = field(default_factory=list)
    withdrawn_candidates: List[int] = field(default_factory=list)

    def total_ballots(self) -> int:
        """The number of ballots cast, counting repeats."""
        return sum(ballot.count for ballot in self.ballots)


def _header_line(config: ElectionConfig) -> str:
    return f"{len(config.candidates)} {config.seats}\n"


def _withdrawn_line(config: ElectionConfig) -> str:
    if not config.withdrawn_candidates:
        return ""
    return " ".join(str(-number) for number in config.withdrawn_candidates) + "\n"


def _ballot_line(ballot: BltBallot) -> str:
    preferences = "".join(f"{preference} " for preference in ballot.preferences)
    return f"{ballot.count} {preferences}0\n"


def _candidate_line(name: str) -> str:
    return '"' + name.replace('"', "").strip() + '"\n'


def export_blt(title: str, config: ElectionConfig) -> str:
    """Write the election as BLT text."""
    parts = [_header_line(config), _withdrawn_line(config)]
    parts.extend(_ballot_line(ballot) for ballot in config.ballots)
    parts.append("0\n")
    parts.extend(_candidate_line(name) for name in config.candidates)
    parts.append('"' + (title or DEFAULT_TITLE) + '"')
    return "".join(parts)