import pytest

from ballotbox.database import NoRows
from ballotbox.domain import Ballot, BallotOption, Choice, RankedChoice, Session, Voter
from ballotbox.errors import (
    CANNOT_VOTE,
    INVALID_OR_DUPLICATE_OPTIONS,
    NO_CANDIDATES,
    POLL_HAS_ENDED,
    AccessDenied,
    ValidationError,
)
from ballotbox.voting import (
    BallotRequest,
    ChoicesRequest,
    SubmitVoteRequest,
    ValidatingVotingHandler,
    VotingHandler,
    VotingRepository,
)


class FakeDatabase:
    def __init__(self, rows=None, row=None):
        self.rows = rows or []
        self.row = row
        self.calls = []

    def query(self, query, *args):
        self.calls.append(("query", query, args))
        return list(self.rows)

    def query_row(self, query, *args):
        self.calls.append(("query_row", query, args))
        if self.row is None:
            raise NoRows()
        return self.row

    def execute(self, query, *args):
        self.calls.append(("execute", query, args))
        return 1

    def execute_many(self, query, rows):
        rows = [tuple(r) for r in rows]
        self.calls.append(("execute_many", query, rows))
        return len(rows)


CHOICES = [
    Choice(number=1, candidate_id="11", name="Apples", url=""),
    Choice(number=2, candidate_id="12", name="Pears", url="http://example.com/p"),
    Choice(number=3, candidate_id="13", name="Plums", url=""),
]


class FakeVotingRepository:
    def __init__(self, session=None, choices=CHOICES, ballot=None):
        self.session = session
        self.choices = choices
        self.stored_ballot = ballot
        self.voided = []
        self.saved = []
        self.sessions_saved = []
        self.choice_sessions = []

    def voter_session(self, voter_id):
        if self.session is None:
            raise NoRows()
        return self.session

    def save_voter_session(self, voter_id, poll_id):
        self.sessions_saved.append((voter_id, poll_id))
        return Session(id="s1", poll_id=poll_id, voter_id=voter_id, salt="salt")

    def void_previous_ballot(self, voter_id, poll_id):
        self.voided.append((voter_id, poll_id))

    def ballot_choices(self, session):
        self.choice_sessions.append(session)
        return list(self.choices)

    def save_ranked_choices(self, voter_id, ranked_choices):
        self.saved.append((voter_id, list(ranked_choices)))

    def ballot(self, session):
        return self.stored_ballot


class FakePollRepository:
    def __init__(self, ended=False, title="Fruit"):
        self.ended = ended
        self.title = title
        self.asked = []

    def poll_has_ended(self, poll_id):
        self.asked.append(poll_id)
        return self.ended

    def poll_title(self, poll_id):
        return self.title


class RecordingHandler:
    def __init__(self):
        self.requests = []

    def choices(self, request):
        self.requests.append(request)
        return "choices"

    def submit_vote(self, request):
        self.requests.append(request)
        return "submitted"

    def ballot(self, request):
        self.requests.append(request)
        return "ballot"


VOTER = Voter(id="7", can_vote=True)
SESSION = Session(id="s1", poll_id="3", voter_id="7", salt="salt")


# Repository


def test_voter_session_builds_session_from_row():
    db = FakeDatabase(row=(5, 7, 3, "salt"))
    session = VotingRepository(db).voter_session("7")
    assert session == Session(id="5", voter_id="7", poll_id="3", salt="salt")
    assert db.calls[0][2] == ("7",)


def test_voter_session_without_row_raises():
    with pytest.raises(NoRows):
        VotingRepository(FakeDatabase()).voter_session("7")


def test_save_voter_session_keeps_request_ids():
    db = FakeDatabase(row=(9, "salt"))
    session = VotingRepository(db).save_voter_session("7", "3")
    assert session == Session(id="9", poll_id="3", voter_id="7", salt="salt")
    assert db.calls[0][2] == ("7", "3")


def test_ballot_choices_maps_rows_and_passes_session_fields():
    db = FakeDatabase(rows=[(1, 11, "Apples", None), (2, 12, "Pears", "http://example.com/p")])
    choices = VotingRepository(db).ballot_choices(SESSION)
    assert choices == [
        Choice(number=1, candidate_id="11", name="Apples", url=""),
        Choice(number=2, candidate_id="12", name="Pears", url="http://example.com/p"),
    ]
    assert db.calls[0][2] == ("3", "7", "salt")


def test_ballot_maps_rows_in_order():
    db = FakeDatabase(rows=[(1, 2, 12, "Pears", ""), (2, 1, 11, "Apples", "")])
    ballot = VotingRepository(db).ballot(SESSION)
    assert ballot.poll_id == "3"
    assert ballot.voter.id == "7"
    assert [r.rank for r in ballot.ranked_choices] == [1, 2]
    assert ballot.flat_preferences() == [2, 1]


def test_save_ranked_choices_writes_one_row_each():
    db = FakeDatabase()
    ranked = [RankedChoice(rank=1, choice=CHOICES[1]), RankedChoice(rank=2, choice=CHOICES[0])]
    VotingRepository(db).save_ranked_choices("7", ranked)
    kind, _, rows = db.calls[0]
    assert kind == "execute_many"
    assert rows == [("7", "12", 1), ("7", "11", 2)]


def test_void_previous_ballot_passes_voter_then_poll():
    db = FakeDatabase()
    VotingRepository(db).void_previous_ballot("7", "3")
    assert db.calls[0][0] == "execute"
    assert db.calls[0][2] == ("7", "3")


# Handler


def test_submit_vote_maps_numbers_to_choices():
    repo = FakeVotingRepository(session=SESSION)
    handler = VotingHandler(repo, FakePollRepository())
    response = handler.submit_vote(
        SubmitVoteRequest(voter=VOTER, options=[BallotOption(rank=1, number=3), BallotOption(rank=2, number=1)])
    )
    assert [r.choice for r in response.ranked_choices] == [CHOICES[2], CHOICES[0]]
    assert [r.rank for r in response.ranked_choices] == [1, 2]
    assert repo.voided == [("7", "3")]
    assert repo.saved == [("7", response.ranked_choices)]


def test_submit_vote_without_session_uses_empty_session():
    repo = FakeVotingRepository(session=None)
    handler = VotingHandler(repo, FakePollRepository())
    handler.submit_vote(SubmitVoteRequest(voter=VOTER, options=[BallotOption(rank=1, number=2)]))
    assert repo.voided == [("7", "")]
    assert repo.choice_sessions == [Session()]


def test_submit_vote_rejects_number_out_of_range():
    repo = FakeVotingRepository(session=SESSION)
    handler = VotingHandler(repo, FakePollRepository())
    with pytest.raises(ValidationError) as info:
        handler.submit_vote(SubmitVoteRequest(voter=VOTER, options=[BallotOption(rank=1, number=0)]))
    assert str(info.value) == INVALID_OR_DUPLICATE_OPTIONS
    assert repo.saved == []


def test_choices_opens_session_and_returns_title():
    repo = FakeVotingRepository()
    handler = VotingHandler(repo, FakePollRepository(title="Fruit"))
    response = handler.choices(ChoicesRequest(voter=VOTER, poll_id="3"))
    assert response.title == "Fruit"
    assert response.choices == CHOICES
    assert repo.sessions_saved == [("7", "3")]


def test_ballot_returns_stored_ranked_choices():
    ranked = [RankedChoice(rank=1, choice=CHOICES[1])]
    repo = FakeVotingRepository(session=SESSION, ballot=Ballot(poll_id="3", ranked_choices=ranked))
    response = VotingHandler(repo, FakePollRepository()).ballot(BallotRequest(voter=VOTER))
    assert response.ranked_choices == ranked


def test_ballot_without_session_raises():
    handler = VotingHandler(FakeVotingRepository(session=None), FakePollRepository())
    with pytest.raises(NoRows):
        handler.ballot(BallotRequest(voter=VOTER))


# Validator


def _validator(ended=False, session=SESSION):
    inner = RecordingHandler()
    polls = FakePollRepository(ended=ended)
    validator = ValidatingVotingHandler(inner, FakeVotingRepository(session=session), polls)
    return validator, inner, polls


def test_choices_requires_vote_right():
    validator, inner, _ = _validator()
    with pytest.raises(AccessDenied) as info:
        validator.choices(ChoicesRequest(voter=Voter(id="7", can_vote=False), poll_id="3"))
    assert str(info.value) == CANNOT_VOTE
    assert inner.requests == []


def test_choices_rejects_ended_poll():
    validator, _, _ = _validator(ended=True)
    with pytest.raises(ValidationError) as info:
        validator.choices(ChoicesRequest(voter=VOTER, poll_id="3"))
    assert str(info.value) == POLL_HAS_ENDED


def test_choices_delegates_when_open():
    validator, inner, polls = _validator()
    request = ChoicesRequest(voter=VOTER, poll_id="3")
    assert validator.choices(request) == "choices"
    assert inner.requests == [request]
    assert polls.asked == ["3"]


def test_submit_vote_requires_vote_right():
    validator, _, _ = _validator()
    with pytest.raises(AccessDenied):
        validator.submit_vote(
            SubmitVoteRequest(voter=Voter(id="7"), options=[BallotOption(rank=1, number=1)])
        )


def test_submit_vote_rejects_ended_session_poll():
    validator, _, polls = _validator(ended=True)
    with pytest.raises(ValidationError) as info:
        validator.submit_vote(SubmitVoteRequest(voter=VOTER, options=[BallotOption(rank=1, number=1)]))
    assert str(info.value) == POLL_HAS_ENDED
    assert polls.asked == ["3"]


def test_submit_vote_requires_an_option():
    validator, _, _ = _validator()
    with pytest.raises(ValidationError) as info:
        validator.submit_vote(SubmitVoteRequest(voter=VOTER, options=[]))
    assert str(info.value) == NO_CANDIDATES


@pytest.mark.parametrize(
    "numbers",
    [[0], [4], [-1], [1, 1], [2, 3, 2]],
)
def test_submit_vote_rejects_invalid_or_duplicate(numbers):
    validator, inner, _ = _validator()
    options = [BallotOption(rank=i + 1, number=n) for i, n in enumerate(numbers)]
    with pytest.raises(ValidationError) as info:
        validator.submit_vote(SubmitVoteRequest(voter=VOTER, options=options))
    assert str(info.value) == INVALID_OR_DUPLICATE_OPTIONS
    assert inner.requests == []


def test_submit_vote_delegates_valid_vote():
    validator, inner, _ = _validator()
    request = SubmitVoteRequest(
        voter=VOTER,
        options=[BallotOption(rank=1, number=3), BallotOption(rank=2, number=1), BallotOption(rank=3, number=2)],
    )
    assert validator.submit_vote(request) == "submitted"
    assert inner.requests == [request]


def test_ballot_passes_through():
    validator, inner, _ = _validator()
    request = BallotRequest(voter=VOTER)
    assert validator.ballot(request) == "ballot"
    assert inner.requests == [request]