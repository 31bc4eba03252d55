"""Core records shared by registration, polling, voting and counting."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


@dataclass
class Organization:
    """A group of voters that owns polls."""

    id: str = ""
    name: str = ""
    external_id: str = ""
    max_concurrent_polls: Optional[int] = None


@dataclass
class Voter:
    """A registered member of an organization."""

    id: str = ""
    external_id: str = ""
    name: str = ""
    can_vote: bool = False
    organization: Organization = field(default_factory=Organization)
    is_organization_admin: bool = False


@dataclass(frozen=True)
class Identity:
    """The caller's identity as presented by the client."""

    voter_external_id: str = ""
    voter_name: str = ""
    organization_external_id: str = ""
    organization_name: str = ""


@dataclass
class Poll:
    """A poll together with its owner and the voters who took part."""

    id: str = ""
    organization: Organization = field(default_factory=Organization)
    creator: Voter = field(default_factory=Voter)
    title: str = ""
    created: datetime = _ZERO_TIME
    expires: Optional[datetime] = None
    voters: List[Voter] = field(default_factory=list)
    ended: bool = False

    def external_id(self) -> str:
        """The creation time in Unix seconds, written in lower-case hex."""
        created = self.created
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return format(math.floor(created.timestamp()), "x")


@dataclass
class Candidate:
    """An option that can be chosen in a poll."""

    id: int = 0
    name: str = ""
    url: str = ""


def candidate_names(candidates: Iterable[Candidate]) -> List[str]:
    """Names of the candidates, in the given order."""
    return [candidate.name for candidate in candidates]


@dataclass
class Session:
    """A voter's view of one poll; the salt fixes the option order."""

    id: str = ""
    poll_id: str = ""
    voter_id: str = ""
    option_map: List[str] = field(default_factory=list)
    salt: str = ""


@dataclass
class Choice:
    """A candidate as numbered on one voter's ballot."""

    number: int = 0
    candidate_id: str = ""
    name: str = ""
    url: str = ""


@dataclass
class RankedChoice:
    """A choice together with the rank the voter gave it."""

    rank: int = 0
    choice: Choice = field(default_factory=Choice)


@dataclass
class Ballot:
    """A voter's ranked choices in one poll."""

    poll_id: str = ""
    voter: Voter = field(default_factory=Voter)
    ranked_choices: List[RankedChoice] = field(default_factory=list)

    def flat_preferences(self) -> List[int]:
        """Choice numbers in ranked order."""
        return [int(ranked.choice.number) for ranked in self.ranked_choices]


@dataclass(frozen=True)
class BallotOption:
    """A choice number and the rank submitted for it."""

    rank: int = 0
    number: int = 0


@dataclass(frozen=True)
class ElectedCandidate:
    """A winner and the order in which it was elected."""

    rank: int = 0
    name: str = ""