from ballotbox.blt import BltBallot, ElectionConfig, export_blt


def _config(**overrides):
    values = dict(
        seats=1,
        candidates=["Alice", "Bob"],
        ballots=[BltBallot(1, [1, 2]), BltBallot(1, [2])],
    )
    values.update(overrides)
    return ElectionConfig(**values)


def test_export_worked_example():
    text = export_blt("Lunch", _config())
    assert text == '2 1\n1 1 2 0\n1 2 0\n0\n"Alice"\n"Bob"\n"Lunch"'


def test_header_counts_candidates_and_seats():
    config = _config(seats=2, candidates=["A", "B", "C"])
    first_line = export_blt("T", config).split("\n")[0]
    assert first_line == f"{len(config.candidates)} {config.seats}"


def test_withdrawn_candidates_are_negated():
    lines = export_blt("T", _config(withdrawn_candidates=[1, 2])).split("\n")
    assert lines[1] == "-1 -2"


def test_no_withdrawn_line_without_withdrawals():
    lines = export_blt("T", _config()).split("\n")
    assert lines[1] == "1 1 2 0"


def test_empty_title_uses_default():
    assert export_blt("", _config()).endswith('"Election"')


def test_title_is_last_and_has_no_newline():
    text = export_blt("Board", _config())
    assert text.split("\n")[-1] == '"Board"'


def test_candidate_names_lose_quotes_and_outer_space():
    text = export_blt("T", _config(candidates=[' "Al" ice ', "Bob"]))
    assert '"Al ice"\n' in text


def test_ballot_section_ends_with_zero_line():
    config = _config()
    lines = export_blt("T", config).split("\n")
    end = 1 + len(config.ballots)
    assert lines[end] == "0"
    assert all(line.endswith(" 0") for line in lines[1:end])


def test_ballot_count_leads_line():
    config = _config(ballots=[BltBallot(5, [2, 1])])
    lines = export_blt("T", config).split("\n")
    assert lines[1].split()[0] == "5"
    assert lines[1].split()[1:3] == ["2", "1"]


def test_empty_ballot_has_only_terminator():
    config = _config(ballots=[BltBallot(1, [])])
    lines = export_blt("T", config).split("\n")
    assert lines[1].split() == ["1", "0"]


def test_total_ballots_sums_counts():
    config = _config(ballots=[BltBallot(3, [1]), BltBallot(4, [2])])
    assert config.total_ballots() == 3 + 4
    assert ElectionConfig().total_ballots() == 0