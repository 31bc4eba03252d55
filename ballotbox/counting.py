"""Counting the ballots of an ended poll and exporting them."""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .blt import BltBallot, ElectionConfig, export_blt
from .domain import Ballot, Candidate, Choice, ElectedCandidate, RankedChoice, Voter, candidate_names
from .errors import POLL_HAS_NOT_ENDED, ValidationError, err_unknown_count_method

METHOD_NAME = "MeekSTV"
METHOD_KEY = "meekstv"


@dataclass
class CountRequest:
    """Count a poll's ballots for a number of seats."""

    poll_id: str = ""
    method: str = ""
    seats: int = 0


@dataclass
class CountResponse:
    """The outcome of a count."""

    title: str = ""
    candidates: int = 0
    ballots: int = 0
    elected: List[ElectedCandidate] = field(default_factory=list)
    report: str = ""
    method: str = ""


@dataclass
class ExportRequest:
    """Export a poll's ballots, marking some candidates as withdrawn."""

    poll_id: str = ""
    seats: int = 0
    withdrawn: List[int] = field(default_factory=list)


@dataclass
class ExportResponse:
    """A poll's ballots in BLT form."""

    blt: str = ""


@dataclass
class CountResult:
    """Winners in order of election, and a round-by-round report."""

    elected: List[str] = field(default_factory=list)
    report: str = ""


_VOTER_IDS = """SELECT DISTINCT voter_id
    FROM ballot
    INNER JOIN candidate ON candidate_id = candidate.Id
    WHERE candidate.poll_id = $1
    AND void = false"""

_BALLOT = """SELECT rank, c.number
    FROM ballot
    INNER JOIN (SELECT row_number() OVER (ORDER by id ASC) as number, id FROM candidate WHERE poll_id = $1) c
        ON candidate_id = c.id
    WHERE voter_id = $2
    AND void = false
    ORDER BY rank"""

_CANDIDATES = """SELECT id, name, url
    FROM candidate
    WHERE poll_id = $1
    ORDER BY id ASC"""


class CountingRepository:
    """Reads the valid ballots and candidates of a poll."""

    def __init__(self, database: Any) -> None:
        self._db = database

    def voter_ids(self, poll_id: str) -> List[str]:
        """Ids of voters holding a valid ballot in the poll."""
        return [str(voter_id) for (voter_id,) in self._db.query(_VOTER_IDS, poll_id)]

    def ballot(self, poll_id: str, voter_id: str) -> Ballot:
        """The voter's valid ballot, choices numbered in candidate order."""
        return Ballot(
            poll_id=poll_id,
            voter=Voter(id=voter_id),
            ranked_choices=[
                RankedChoice(rank=int(rank), choice=Choice(number=int(number)))
                for rank, number in self._db.query(_BALLOT, poll_id, voter_id)
            ],
        )

    def candidates(self, poll_id: str) -> List[Candidate]:
        """The poll's candidates in the order they were created."""
        return [
            Candidate(id=int(candidate_id), name=name, url="" if url is None else url)
            for candidate_id, name, url in self._db.query(_CANDIDATES, poll_id)
        ]


_HOPEFUL, _ELECTED, _EXCLUDED, _WITHDRAWN = "hopeful", "elected", "excluded", "withdrawn"


def _distribute(
    ballots: Sequence[Tuple[int, List[int]]], keep: List[float]
) -> Tuple[List[float], float]:
    votes = [0.0] * len(keep)
    excess = 0.0
    for count, preferences in ballots:
        weight = float(count)
        for index in preferences:
            share = weight * keep[index]
            votes[index] += share
            weight -= share
            if weight <= 0.0:
                weight = 0.0
                break
        excess += weight
    return votes, excess


def _meek_stv(
    config: ElectionConfig, tolerance: float = 1e-9, max_iterations: int = 1000
) -> CountResult:
    """Count the election by Meek's method of single transferable vote."""
    names = list(config.candidates)
    total_candidates = len(names)
    seats = config.seats
    if seats < 1:
        raise ValueError("at least one seat must be filled")
    if total_candidates < 1:
        raise ValueError("at least one candidate is required")

    keep = [1.0] * total_candidates
    status = [_HOPEFUL] * total_candidates
    for number in config.withdrawn_candidates:
        if 1 <= number <= total_candidates:
            keep[number - 1] = 0.0
            status[number - 1] = _WITHDRAWN

    ballots = [
        (ballot.count, [p - 1 for p in ballot.preferences if 1 <= p <= total_candidates])
        for ballot in config.ballots
    ]
    cast = float(sum(count for count, _ in ballots))

    elected: List[int] = []
    report: List[str] = [
        f"Seats: {seats}",
        f"Candidates: {total_candidates}",
        f"Ballots: {config.total_ballots()}",
    ]

    def elect(index: int) -> None:
        status[index] = _ELECTED
        elected.append(index)
        report.append(f"Elected: {names[index]}")

    round_number = 0
    while len(elected) < seats:
        hopeful = [i for i, state in enumerate(status) if state == _HOPEFUL]
        if not hopeful:
            break
        if len(elected) + len(hopeful) <= seats:
            for index in hopeful:
                elect(index)
            break

        round_number += 1
        votes, excess = _distribute(ballots, keep)
        quota = (cast - excess) / (seats + 1)
        for _ in range(max_iterations):
            winners = [i for i, state in enumerate(status) if state == _ELECTED]
            changed = False
            for index in winners:
                if votes[index] <= 0.0:
                    continue
                updated = min(1.0, keep[index] * quota / votes[index])
                if abs(updated - keep[index]) > tolerance:
                    changed = True
                keep[index] = updated
            if not changed:
                break
            votes, excess = _distribute(ballots, keep)
            quota = (cast - excess) / (seats + 1)

        report.append(f"Round {round_number}: quota {quota:.6f}, excess {excess:.6f}")
        for index, name in enumerate(names):
            report.append(f"  {name}: {votes[index]:.6f} ({status[index]})")

        reached = [
            i for i in hopeful if quota > 0.0 and votes[i] >= quota - tolerance * max(1.0, quota)
        ]
        if reached:
            for index in sorted(reached, key=lambda i: -votes[i]):
                if len(elected) < seats:
                    elect(index)
            continue

        loser = min(hopeful, key=lambda i: (votes[i], -i))
        status[loser] = _EXCLUDED
        keep[loser] = 0.0
        report.append(f"Excluded: {names[loser]}")

    report.append("Winners: " + ", ".join(names[i] for i in elected))
    return CountResult(elected=[names[i] for i in elected], report="\n".join(report) + "\n")


Counter = Callable[[ElectionConfig], CountResult]


class CountingHandler:
    """Counts and exports polls from their stored ballots."""

    def __init__(
        self, repository: Any, poll_repository: Any, counter: Optional[Counter] = None
    ) -> None:
        self._repository = repository
        self._poll_repository = poll_repository
        self._counter = counter or _meek_stv

    def count(self, request: CountRequest) -> CountResponse:
        """Count the poll's ballots and report the winners."""
        config = self._build_config(request.poll_id, request.seats)
        try:
            result = self._counter(config)
        except ValueError:
            raise
        except Exception as error:
            raise RuntimeError(
                f"caught panic while counting votes: {traceback.format_exc()}"
            ) from error

        elected = [
            ElectedCandidate(rank=position, name=name)
            for position, name in enumerate(result.elected, start=1)
        ]
        title = self._poll_repository.poll_title(request.poll_id)
        return CountResponse(
            title=title,
            candidates=len(config.candidates),
            ballots=config.total_ballots(),
            method=METHOD_NAME,
            elected=elected,
            report=result.report,
        )

    def export(self, request: ExportRequest) -> ExportResponse:
        """The poll's ballots as BLT text."""
        title = self._poll_repository.poll_title(request.poll_id)
        config = self._build_config(request.poll_id, request.seats)
        config.withdrawn_candidates = list(request.withdrawn)
        return ExportResponse(blt=export_blt(title, config))

    def _build_config(self, poll_id: str, seats: int) -> ElectionConfig:
        candidates = self._repository.candidates(poll_id)
        ballots = [
            self._repository.ballot(poll_id, voter_id)
            for voter_id in self._repository.voter_ids(poll_id)
        ]
        return ElectionConfig(
            seats=seats,
            candidates=candidate_names(candidates),
            ballots=[BltBallot(count=1, preferences=b.flat_preferences()) for b in ballots],
        )


class ValidatingCountingHandler:
    """Allows counting and export only once a poll has ended."""

    def __init__(self, handler: Any, repository: Any, poll_repository: Any) -> None:
        self._handler = handler
        self._repository = repository
        self._poll_repository = poll_repository

    def count(self, request: CountRequest) -> CountResponse:
        """Count if the poll has ended and the method is supported."""
        self._require_ended(request.poll_id)
        if request.method.casefold() != METHOD_KEY:
            raise err_unknown_count_method(request.method)
        return self._handler.count(request)

    def export(self, request: ExportRequest) -> ExportResponse:
        """Export if the poll has ended."""
        self._require_ended(request.poll_id)
        return self._handler.export(request)

    def _require_ended(self, poll_id: str) -> None:
        if not self._poll_repository.poll_has_ended(poll_id):
            raise ValidationError(POLL_HAS_NOT_ENDED)