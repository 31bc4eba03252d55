"""Showing ballots to voters, taking their votes and reading them back."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Sequence

from .database import NoRows
from .domain import Ballot, BallotOption, Choice, RankedChoice, Session, Voter
from .errors import (
    CANNOT_VOTE,
    INVALID_OR_DUPLICATE_OPTIONS,
    NO_CANDIDATES,
    POLL_HAS_ENDED,
    AccessDenied,
    ValidationError,
)


@dataclass
class ChoicesRequest:
    """Ask for the numbered choices of a poll, opening a session for it."""

    voter: Voter = field(default_factory=Voter)
    poll_id: str = ""


@dataclass
class ChoicesResponse:
    """A poll's title and the choices as numbered for one voter."""

    title: str = ""
    choices: List[Choice] = field(default_factory=list)


@dataclass
class SubmitVoteRequest:
    """A vote for the poll of the voter's latest session."""

    poll_id: str = ""
    voter: Voter = field(default_factory=Voter)
    options: List[BallotOption] = field(default_factory=list)


@dataclass
class SubmitVoteResponse:
    """The choices recorded for the vote."""

    ranked_choices: List[RankedChoice] = field(default_factory=list)


@dataclass
class BallotRequest:
    """Ask for the voter's current ballot."""

    poll_id: str = ""
    voter: Voter = field(default_factory=Voter)


@dataclass
class BallotResponse:
    """The voter's current ranked choices."""

    ranked_choices: List[RankedChoice] = field(default_factory=list)


_VOID_PREVIOUS_BALLOT = """UPDATE ballot
    SET void = true, updated = now()
    FROM candidate
    WHERE voter_id = $1
    AND candidate.id = candidate_id
    AND candidate.poll_id = $2"""

_SAVE_RANKED_CHOICE = "INSERT INTO ballot (voter_id, candidate_id, rank) VALUES ($1, $2, $3)"

_VOTER_SESSION = """SELECT id,
        voter_id,
        poll_id,
        salt
    FROM session
    WHERE voter_id = $1
    ORDER BY last_viewed desc
    LIMIT 1"""

_SAVE_VOTER_SESSION = """INSERT INTO session (
        voter_id,
        poll_id,
        last_viewed)
    VALUES ($1, $2, now())
    ON CONFLICT (voter_id, poll_id)
    DO UPDATE SET last_viewed = now()
    RETURNING id, salt"""

_BALLOT_CHOICES = """SELECT row_number() OVER (ORDER BY md5(concat(candidate.id::text, $2::text, $3::text)) COLLATE "C" DESC) AS number, id, name, url
    FROM candidate
    WHERE poll_id = $1
    ORDER BY number ASC"""

_BALLOT = """SELECT rank, c.number, c.id, c.name, c.url
    FROM ballot
    INNER JOIN (SELECT row_number() OVER (ORDER BY md5(concat(candidate.id::text, $2::text, $3::text)) COLLATE "C" DESC) AS number, id, name, url FROM candidate WHERE poll_id = $1) c
        ON candidate_id = c.id
    WHERE voter_id = $2::integer
    AND void = false
    ORDER BY rank"""


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class VotingRepository:
    """Sessions and ballots storage."""

    def __init__(self, database: Any) -> None:
        self._db = database

    def void_previous_ballot(self, voter_id: str, poll_id: str) -> None:
        """Mark the voter's earlier ballot in the poll as void."""
        self._db.execute(_VOID_PREVIOUS_BALLOT, voter_id, poll_id)

    def save_ranked_choices(self, voter_id: str, ranked_choices: Iterable[RankedChoice]) -> None:
        """Store one ballot row per ranked choice, in one transaction."""
        self._db.execute_many(
            _SAVE_RANKED_CHOICE,
            [(voter_id, ranked.choice.candidate_id, ranked.rank) for ranked in ranked_choices],
        )

    def voter_session(self, voter_id: str) -> Session:
        """The voter's most recently viewed session; raise NoRows if none."""
        session_id, stored_voter_id, poll_id, salt = self._db.query_row(_VOTER_SESSION, voter_id)
        return Session(
            id=_text(session_id),
            voter_id=_text(stored_voter_id),
            poll_id=_text(poll_id),
            salt=_text(salt),
        )

    def save_voter_session(self, voter_id: str, poll_id: str) -> Session:
        """Open or refresh the voter's session for the poll."""
        session_id, salt = self._db.query_row(_SAVE_VOTER_SESSION, voter_id, poll_id)
        return Session(id=_text(session_id), poll_id=poll_id, voter_id=voter_id, salt=_text(salt))

    def ballot_choices(self, session: Session) -> List[Choice]:
        """The poll's candidates, numbered in the session's own order."""
        return [
            Choice(number=int(number), candidate_id=_text(candidate_id), name=_text(name), url=_text(url))
            for number, candidate_id, name, url in self._db.query(
                _BALLOT_CHOICES, session.poll_id, session.voter_id, session.salt
            )
        ]

    def ballot(self, session: Session) -> Ballot:
        """The voter's valid ballot in the session's poll, in rank order."""
        rows = self._db.query(_BALLOT, session.poll_id, session.voter_id, session.salt)
        return Ballot(
            poll_id=session.poll_id,
            voter=Voter(id=session.voter_id),
            ranked_choices=[
                RankedChoice(
                    rank=int(rank),
                    choice=Choice(
                        number=int(number),
                        candidate_id=_text(candidate_id),
                        name=_text(name),
                        url=_text(url),
                    ),
                )
                for rank, number, candidate_id, name, url in rows
            ],
        )


def _session_or_empty(repository: Any, voter_id: str) -> Session:
    try:
        return repository.voter_session(voter_id)
    except NoRows:
        return Session()


class VotingHandler:
    """Voting operations on top of the repositories."""

    def __init__(self, repository: Any, poll_repository: Any) -> None:
        self._repository = repository
        self._poll_repository = poll_repository

    def submit_vote(self, request: SubmitVoteRequest) -> SubmitVoteResponse:
        """Replace the voter's ballot in the session's poll with the given options."""
        session = _session_or_empty(self._repository, request.voter.id)
        self._repository.void_previous_ballot(request.voter.id, session.poll_id)
        available = self._repository.ballot_choices(session)

        ranked_choices = []
        for option in request.options:
            if not 1 <= option.number <= len(available):
                raise ValidationError(INVALID_OR_DUPLICATE_OPTIONS)
            ranked_choices.append(RankedChoice(rank=option.rank, choice=available[option.number - 1]))

        self._repository.save_ranked_choices(request.voter.id, ranked_choices)
        return SubmitVoteResponse(ranked_choices=ranked_choices)

    def choices(self, request: ChoicesRequest) -> ChoicesResponse:
        """Open a session for the poll and return its numbered choices."""
        session = self._repository.save_voter_session(request.voter.id, request.poll_id)
        choices = self._repository.ballot_choices(session)
        title = self._poll_repository.poll_title(request.poll_id)
        return ChoicesResponse(title=title, choices=choices)

    def ballot(self, request: BallotRequest) -> BallotResponse:
        """The voter's ballot in the poll of their latest session."""
        session = self._repository.voter_session(request.voter.id)
        return BallotResponse(ranked_choices=self._repository.ballot(session).ranked_choices)


def _check_options(options: Sequence[BallotOption], maximum: int) -> None:
    if not options:
        raise ValidationError(NO_CANDIDATES)
    seen = set()
    for option in options:
        if not 1 <= option.number <= maximum or option.number in seen:
            raise ValidationError(INVALID_OR_DUPLICATE_OPTIONS)
        seen.add(option.number)


class ValidatingVotingHandler:
    """Checks voting rights, poll state and options before delegating."""

    def __init__(self, handler: Any, repository: Any, poll_repository: Any) -> None:
        self._handler = handler
        self._repository = repository
        self._poll_repository = poll_repository

    def choices(self, request: ChoicesRequest) -> ChoicesResponse:
        """Show the choices if the voter may vote and the poll is open."""
        if not request.voter.can_vote:
            raise AccessDenied(CANNOT_VOTE)
        if self._poll_repository.poll_has_ended(request.poll_id):
            raise ValidationError(POLL_HAS_ENDED)
        return self._handler.choices(request)

    def submit_vote(self, request: SubmitVoteRequest) -> SubmitVoteResponse:
        """Take the vote if the voter may vote, the poll is open and the options are sound."""
        if not request.voter.can_vote:
            raise AccessDenied(CANNOT_VOTE)
        session = _session_or_empty(self._repository, request.voter.id)
        if self._poll_repository.poll_has_ended(session.poll_id):
            raise ValidationError(POLL_HAS_ENDED)
        try:
            choices = self._repository.ballot_choices(session)
        except NoRows:
            choices = []
        _check_options(request.options, len(choices))
        return self._handler.submit_vote(request)

    def ballot(self, request: BallotRequest) -> BallotResponse:
        """Read the voter's ballot."""
        return self._handler.ballot(request)