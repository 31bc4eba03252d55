"""Creating, reading, opening and ending polls."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

from .database import NoRows
from .domain import Candidate, Organization, Poll, Voter
from .errors import (
    MAX_CONCURRENT,
    NO_CANDIDATES,
    NOT_OWNER,
    PAST_POLL_EXPIRATION,
    AccessDenied,
    NotFound,
    ValidationError,
)

MAX_VOTERS_RETURN = 100


@dataclass
class PollRequest:
    """Ask for a poll; an empty id means the organization's latest."""

    id: str = ""
    voter: Voter = field(default_factory=Voter)


@dataclass
class CreatePollRequest:
    """A new poll and its candidates."""

    creator: Voter = field(default_factory=Voter)
    title: str = ""
    ranked: bool = False
    expiration: Optional[datetime] = None
    manually_ended: bool = False
    candidates: List[Candidate] = field(default_factory=list)


@dataclass
class OpenPollRequest:
    """Reopen a poll, optionally until a given time."""

    poll_id: str = ""
    expires: Optional[datetime] = None
    voter: Voter = field(default_factory=Voter)


@dataclass
class EndPollRequest:
    """End a poll now."""

    poll_id: str = ""
    voter: Voter = field(default_factory=Voter)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


_SAVE_POLL = """INSERT INTO poll (
        organization_id,
        creator_id,
        title,
        expiration)
    VALUES ($1, $2, $3, $4)
    RETURNING id"""

_SAVE_CANDIDATE = "INSERT INTO candidate (poll_id, name, url) VALUES ($1, $2, $3)"

_POLL = """SELECT poll.id,
        poll.created,
        poll.title,
        poll.expiration,
        COALESCE(poll.expiration <= NOW(), false),
        organization.id,
        organization.name,
        organization.external_id,
        voter.id,
        voter.name,
        voter.external_id
    FROM poll
    INNER JOIN organization
        ON poll.organization_id = organization.id
    INNER JOIN voter
        ON poll.creator_id = voter.id
    WHERE poll.id = $1"""

_VOTERS = """SELECT DISTINCT voter_id, voter.name, voter.external_id FROM ballot b
    INNER JOIN candidate c ON c.id = b.candidate_id AND c.poll_id = $1
    INNER JOIN voter ON voter.id = voter_id
    WHERE b.void = false
    ORDER BY voter.name asc
    LIMIT $2"""

_OPEN = "UPDATE poll SET updated=NOW(), expiration = $1 WHERE id = $2"
_END = "UPDATE poll SET updated=NOW(), expiration=NOW() WHERE id = $1"

_LATEST = """SELECT id FROM poll
    WHERE organization_id = $1
    ORDER by created DESC
    LIMIT 1"""

_CREATOR = "SELECT creator_id FROM poll WHERE id = $1"
_TITLE = "SELECT title FROM poll WHERE id = $1"
_HAS_ENDED = "SELECT COALESCE(poll.expiration <= NOW(), false) FROM poll WHERE id = $1"

_CAN_CREATE = """SELECT COUNT(p.id) < o.max_concurrent_polls FROM organization o
    LEFT JOIN poll p ON p.organization_id = o.id AND (p.expiration > NOW() OR p.expiration isnull)
    WHERE o.id = $1
    GROUP BY o.id"""


class PollRepository:
    """Poll storage."""

    def __init__(self, database: Any) -> None:
        self._db = database

    def save_poll(self, request: CreatePollRequest) -> Poll:
        """Store a poll and its candidates; return the stored poll."""
        (poll_id,) = self._db.query_row(
            _SAVE_POLL,
            request.creator.organization.id,
            request.creator.id,
            request.title,
            request.expiration,
        )
        poll_id = str(poll_id)
        try:
            self._db.execute_many(
                _SAVE_CANDIDATE,
                [(poll_id, candidate.name, candidate.url) for candidate in request.candidates],
            )
        except Exception as error:
            raise RuntimeError(f"could not create candidates for poll: {error}") from error
        return self.poll(poll_id)

    def poll(self, poll_id: str) -> Poll:
        """The poll with its organization, creator and first voters."""
        (
            stored_id,
            created,
            title,
            expires,
            ended,
            org_id,
            org_name,
            org_external_id,
            creator_id,
            creator_name,
            creator_external_id,
        ) = self._db.query_row(_POLL, poll_id)
        poll = Poll(
            id=str(stored_id),
            created=_to_datetime(created),
            title=title,
            expires=_to_datetime(expires),
            ended=bool(ended),
            organization=Organization(
                id=str(org_id), name=org_name, external_id=org_external_id
            ),
            creator=Voter(
                id=str(creator_id), name=creator_name, external_id=creator_external_id
            ),
        )
        poll.voters = self.voters(poll.id, MAX_VOTERS_RETURN)
        return poll

    def voters(self, poll_id: str, limit: int = MAX_VOTERS_RETURN) -> List[Voter]:
        """Voters with a valid ballot in the poll, by name, at most ``limit``."""
        return [
            Voter(id=str(voter_id), name=name, external_id=external_id)
            for voter_id, name, external_id in self._db.query(_VOTERS, poll_id, limit)
        ]

    def open(self, poll_id: str, expires: Optional[datetime]) -> None:
        """Set the poll's expiration, or clear it."""
        self._db.execute(_OPEN, expires, poll_id)

    def end(self, poll_id: str) -> None:
        """Expire the poll now."""
        self._db.execute(_END, poll_id)

    def latest_poll_id(self, organization_id: str) -> str:
        """Id of the organization's most recently created poll."""
        (poll_id,) = self._db.query_row(_LATEST, organization_id)
        return str(poll_id)

    def poll_creator_id(self, poll_id: str) -> str:
        """Id of the voter who created the poll."""
        (creator_id,) = self._db.query_row(_CREATOR, poll_id)
        return str(creator_id)

    def poll_title(self, poll_id: str) -> str:
        """The poll's title."""
        (title,) = self._db.query_row(_TITLE, poll_id)
        return title

    def poll_has_ended(self, poll_id: str) -> bool:
        """Whether the poll's expiration has passed."""
        (ended,) = self._db.query_row(_HAS_ENDED, poll_id)
        return bool(ended)

    def can_create_poll(self, organization_id: str) -> bool:
        """Whether the organization is below its limit of open polls."""
        try:
            (can_create,) = self._db.query_row(_CAN_CREATE, organization_id)
        except NoRows:
            return True
        return bool(can_create)


class PollingHandler:
    """Poll operations on top of the repository."""

    def __init__(self, repository: Any) -> None:
        self._repository = repository

    def create_poll(self, request: CreatePollRequest) -> Poll:
        """Store a new poll."""
        return self._repository.save_poll(request)

    def poll(self, request: PollRequest) -> Poll:
        """The requested poll, or the organization's latest."""
        poll_id = self.poll_id_or_latest(request.id, request.voter)
        try:
            return self._repository.poll(poll_id)
        except NoRows:
            raise NotFound() from None

    def open(self, request: OpenPollRequest) -> Poll:
        """Reopen the poll and return it."""
        poll_id = self.poll_id_or_latest(request.poll_id, request.voter)
        self._repository.open(poll_id, request.expires)
        return self.poll(PollRequest(id=poll_id))

    def end(self, request: EndPollRequest) -> Poll:
        """End the poll and return it."""
        poll_id = self.poll_id_or_latest(request.poll_id, request.voter)
        self._repository.end(poll_id)
        return self.poll(PollRequest(id=poll_id))

    def poll_id_or_latest(self, poll_id: str, voter: Voter) -> str:
        """The given id, or the id of the voter's organization's latest poll."""
        if poll_id:
            return poll_id
        try:
            return self._repository.latest_poll_id(voter.organization.id)
        except NoRows:
            raise NotFound() from None


class ValidatingPollingHandler:
    """Checks limits and ownership before delegating to a handler."""

    def __init__(self, handler: Any, repository: Any) -> None:
        self._handler = handler
        self._repository = repository

    def create_poll(self, request: CreatePollRequest) -> Poll:
        """Create the poll if the organization may and the request is sound."""
        if not self._repository.can_create_poll(request.creator.organization.id):
            raise ValidationError(MAX_CONCURRENT)
        if not request.candidates:
            raise ValidationError(NO_CANDIDATES)
        if request.expiration is not None and _as_utc(request.expiration) < datetime.now(
            timezone.utc
        ):
            raise ValidationError(PAST_POLL_EXPIRATION)
        return self._handler.create_poll(request)

    def poll(self, request: PollRequest) -> Poll:
        """Read the poll; anyone may."""
        return self._handler.poll(request)

    def open(self, request: OpenPollRequest) -> Poll:
        """Reopen the poll if the caller created it."""
        self._check_owner(request.poll_id, request.voter)
        return self._handler.open(request)

    def end(self, request: EndPollRequest) -> Poll:
        """End the poll if the caller created it."""
        self._check_owner(request.poll_id, request.voter)
        return self._handler.end(request)

    def poll_id_or_latest(self, poll_id: str, voter: Voter) -> str:
        """The given id, or the latest poll's id."""
        return self._handler.poll_id_or_latest(poll_id, voter)

    def _check_owner(self, poll_id: str, voter: Voter) -> None:
        resolved = self._handler.poll_id_or_latest(poll_id, voter)
        if self._repository.poll_creator_id(resolved) != voter.id:
            raise AccessDenied(NOT_OWNER)