"""
services/exam_service.py

Scoring and result analysis with UPSC negative marking.
Pure functions: no UI code, no global state, no I/O.

Marking scheme: +1 per correct answer, -NEGATIVE_MARK per wrong answer,
0 for an unattempted question. The final score is floored at 0.
Arithmetic is exact (Fraction); values are rounded only when reported.
"""

from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import Dict, List, NamedTuple, Union

from config import NEGATIVE_MARK
from upsc_cbt.models.question_model import Question
from upsc_cbt.models.records import SessionResult, TopicScore

Number = Union[int, float, Fraction]


class ScoreBreakdown(NamedTuple):
    attempted: int
    correct: int
    wrong: int
    skipped: int
    raw_score: Fraction
    negative_marks: Fraction
    final_score: Fraction


def as_fraction(value: Number) -> Fraction:
    """Exact form of a marking fraction; floats like 0.333.. snap back to 1/3."""
    if isinstance(value, float):
        return Fraction(value).limit_denominator(1000)
    return Fraction(value)


def round_score(value: Number, places: int = 2) -> float:
    """
    Round half-up to `places` decimals.

    Fractions are converted through Decimal division so 130/3 gives 43.33
    and 20/3 gives 6.67 without binary float artefacts.
    """
    if isinstance(value, Fraction):
        dec = Decimal(value.numerator) / Decimal(value.denominator)
    else:
        dec = Decimal(str(value))
    quantum = Decimal(1).scaleb(-places)
    return float(dec.quantize(quantum, rounding=ROUND_HALF_UP))


def score_session(
    questions: List[Question],
    user_answers: Dict[str, str],
    negative_mark: Fraction = NEGATIVE_MARK,
) -> ScoreBreakdown:
    """
    Count correct/wrong/skipped answers and compute the exact scores.

    Args:
        questions:     Question set of the session.
        user_answers:  Answer sheet. {question.id: selected label}
        negative_mark: Deduction per wrong answer (default 1/3).

    Returns:
        ScoreBreakdown with exact Fraction scores.
    """
    correct = wrong = 0
    for q in questions:
        selected = user_answers.get(q.id)
        if selected is None:
            continue
        if q.is_correct(selected):
            correct += 1
        else:
            wrong += 1

    attempted = correct + wrong
    raw = Fraction(correct)
    negative = as_fraction(negative_mark) * wrong
    final = max(Fraction(0), raw - negative)

    return ScoreBreakdown(
        attempted=attempted,
        correct=correct,
        wrong=wrong,
        skipped=len(questions) - attempted,
        raw_score=raw,
        negative_marks=negative,
        final_score=final,
    )


def calculate_score(
    questions: List[Question],
    user_answers: Dict[str, str],
    negative_mark: Fraction = NEGATIVE_MARK,
) -> float:
    """Final score rounded to 2 decimals. 0.0 for an empty question list."""
    if not questions:
        return 0.0
    return round_score(score_session(questions, user_answers, negative_mark).final_score)


def get_incorrect_questions(
    questions: List[Question],
    user_answers: Dict[str, str],
) -> List[Question]:
    """
    Wrongly answered questions, original order kept (review list).
    Unattempted questions are not wrong under negative marking; see get_skipped_questions.
    """
    return [
        q for q in questions
        if q.id in user_answers and not q.is_correct(user_answers[q.id])
    ]


def get_skipped_questions(
    questions: List[Question],
    user_answers: Dict[str, str],
) -> List[Question]:
    return [q for q in questions if q.id not in user_answers]


def calculate_topic_scores(
    questions: List[Question],
    user_answers: Dict[str, str],
    negative_mark: Fraction = NEGATIVE_MARK,
) -> List[TopicScore]:
    """
    Per-topic counts and net score, sorted by topic name.
    """
    buckets: Dict[str, Dict[str, int]] = defaultdict(
        lambda: {"total": 0, "correct": 0, "wrong": 0, "skipped": 0}
    )

    for q in questions:
        b = buckets[q.topic or "General Studies"]
        b["total"] += 1
        selected = user_answers.get(q.id)
        if selected is None:
            b["skipped"] += 1
        elif q.is_correct(selected):
            b["correct"] += 1
        else:
            b["wrong"] += 1

    result = []
    for topic in sorted(buckets):
        b = buckets[topic]
        net = max(Fraction(0), b["correct"] - as_fraction(negative_mark) * b["wrong"])
        result.append(TopicScore(topic=topic, **b, net_score=round_score(net)))
    return result


def build_result(
    session_id: str,
    questions: List[Question],
    user_answers: Dict[str, str],
    elapsed_seconds: int,
    negative_mark: Fraction = NEGATIVE_MARK,
    auto_submitted: bool = False,
) -> SessionResult:
    """Score a session and package the rounded, reportable outcome."""
    breakdown = score_session(questions, user_answers, negative_mark)
    return SessionResult(
        session_id=session_id,
        total_questions=len(questions),
        attempted=breakdown.attempted,
        correct=breakdown.correct,
        wrong=breakdown.wrong,
        skipped=breakdown.skipped,
        raw_score=round_score(breakdown.raw_score),
        negative_marks=round_score(breakdown.negative_marks),
        final_score=round_score(breakdown.final_score),
        elapsed_seconds=elapsed_seconds,
        auto_submitted=auto_submitted,
        topic_scores=calculate_topic_scores(questions, user_answers, negative_mark),
    )
