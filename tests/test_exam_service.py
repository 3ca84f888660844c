"""
Unit Tests for exam_service scoring
"""

from fractions import Fraction

import pytest

from conftest import make_question, make_questions
from upsc_cbt.services.exam_service import (
    as_fraction,
    build_result,
    calculate_score,
    calculate_topic_scores,
    get_incorrect_questions,
    get_skipped_questions,
    round_score,
    score_session,
)


@pytest.fixture
def full_paper():
    """100 questions: 50 right, 20 wrong, 30 left blank."""
    questions = make_questions(100)
    answers = {f"q{i}": "A" for i in range(1, 51)}
    answers.update({f"q{i}": "B" for i in range(51, 71)})
    return questions, answers


class TestScoreSession:

    def test_full_paper_breakdown(self, full_paper):
        questions, answers = full_paper
        b = score_session(questions, answers)

        assert (b.attempted, b.correct, b.wrong, b.skipped) == (70, 50, 20, 30)
        assert b.raw_score == 50
        assert b.negative_marks == Fraction(20, 3)
        assert b.final_score == Fraction(130, 3)

    def test_full_paper_result_is_rounded_half_up(self, full_paper):
        questions, answers = full_paper
        result = build_result("s1", questions, answers, elapsed_seconds=6000)

        assert result.raw_score == 50.0
        assert result.negative_marks == 6.67
        assert result.final_score == 43.33
        assert result.total_questions == 100

    def test_final_score_never_negative(self):
        questions = make_questions(3)
        answers = {"q1": "B", "q2": "C", "q3": "D"}
        b = score_session(questions, answers)

        assert b.negative_marks == 1
        assert b.final_score == 0
        assert calculate_score(questions, answers) == 0.0

    def test_blank_sheet_scores_zero(self):
        b = score_session(make_questions(4), {})
        assert (b.attempted, b.skipped, b.final_score) == (0, 4, 0)

    def test_empty_question_list_scores_zero(self):
        assert calculate_score([], {}) == 0.0

    def test_custom_negative_mark(self, full_paper):
        questions, answers = full_paper
        assert calculate_score(questions, answers, negative_mark=Fraction(1, 4)) == 45.0


class TestHelpers:

    @pytest.mark.parametrize(
        "value, expected",
        [
            (Fraction(1, 8), 0.13),
            (Fraction(2, 3), 0.67),
            (Fraction(1, 3), 0.33),
            (2.675, 2.68),
            (0, 0.0),
        ],
    )
    def test_round_score_half_up(self, value, expected):
        assert round_score(value) == expected

    def test_as_fraction_snaps_float_thirds(self):
        assert as_fraction(1 / 3) == Fraction(1, 3)
        assert as_fraction(0.25) == Fraction(1, 4)
        assert as_fraction("1/3") == Fraction(1, 3)

    def test_incorrect_excludes_skipped(self):
        questions = make_questions(4)
        answers = {"q1": "A", "q2": "C"}

        assert [q.id for q in get_incorrect_questions(questions, answers)] == ["q2"]
        assert [q.id for q in get_skipped_questions(questions, answers)] == ["q3", "q4"]

    def test_topic_scores_grouped_and_sorted(self):
        questions = [
            make_question("p1", topic="Polity"),
            make_question("p2", topic="Polity"),
            make_question("h1", topic="History"),
        ]
        answers = {"p1": "A", "p2": "B", "h1": "A"}

        scores = calculate_topic_scores(questions, answers)

        assert [s.topic for s in scores] == ["History", "Polity"]
        polity = scores[1]
        assert (polity.total, polity.correct, polity.wrong, polity.skipped) == (2, 1, 1, 0)
        assert polity.net_score == 0.67
