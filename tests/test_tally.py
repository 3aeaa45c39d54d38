"""Tests for the majority tally."""

from stakeit.services.tally import majority_of, tally


class TestMajority:
    def test_strict_majority(self):
        assert majority_of(1) == 1
        assert majority_of(2) == 2
        assert majority_of(3) == 2
        assert majority_of(4) == 3
        assert majority_of(5) == 3

    def test_zero_referees_needs_one_vote(self):
        assert majority_of(0) == 1


class TestTally:
    def test_single_yes_of_two_is_undetermined(self):
        result = tally([True], total_referees=2)

        assert result.yes == 1
        assert result.no == 0
        assert result.passed is None
        assert not result.resolved

    def test_yes_majority_passes(self):
        result = tally([True, True], total_referees=2)
        assert result.passed is True

    def test_no_majority_fails(self):
        result = tally([False, True, False], total_referees=3)

        assert result.passed is False
        assert result.yes == 1
        assert result.no == 2

    def test_split_vote_of_four_stays_open(self):
        assert tally([True, True, False, False], total_referees=4).passed is None

    def test_zero_referees_first_vote_decides(self):
        # Kept as-is; no minimum quorum for goals without referees
        assert tally([True], total_referees=0).passed is True
        assert tally([False], total_referees=0).passed is False

    def test_no_votes(self):
        result = tally([], total_referees=3)
        assert (result.yes, result.no, result.passed) == (0, 0, None)

    def test_order_does_not_matter(self):
        votes = [True, False, True, True, False]
        forward = tally(votes, total_referees=5)
        backward = tally(list(reversed(votes)), total_referees=5)

        assert forward == backward
        assert forward.passed is True

    def test_accepts_generators(self):
        result = tally((v for v in [True, True, True]), total_referees=5)
        assert result.yes == 3
        assert result.passed is True
