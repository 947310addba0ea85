"""
Answer evaluation and attempt scoring

Questions are the stored test dicts: question_id, type, options
[{option_id, text, is_correct}], correct_answer, marks.
"""

import json
import logging
import math
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from vidya.config import settings
from vidya.exams.models import QuestionType

logger = logging.getLogger(__name__)

TRUE_VALUES = {"true", "1", "t", "yes"}
FALSE_VALUES = {"false", "0", "f", "no"}

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ==================== NORMALISATION ====================

def normalize(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def parse_leading_int(value: Any) -> Optional[int]:
    """Integer prefix of a value ("12abc" -> 12), None when there is none"""
    if isinstance(value, bool) or value is None:
        return None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def to_bool(value: str) -> Optional[bool]:
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    return None


def arrays_equal(a: List[str], b: List[str]) -> bool:
    """Exact set equality of two small lists, order ignored"""
    return sorted(a) == sorted(b)


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str) and value.strip().startswith("["):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [value]
        if isinstance(parsed, list):
            return parsed
    return [value]


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return normalize(value) == ""


def resolve_option(question: dict, value: Any) -> str:
    """Map an option id to that option's text; other values pass through normalised"""
    norm = normalize(value)
    for option in question.get("options") or []:
        if norm and normalize(option.get("option_id")) == norm:
            return normalize(option.get("text"))
    return norm


def accepted_answers(question: dict) -> set:
    correct = normalize(question.get("correct_answer"))
    accepted = {correct}
    for option in question.get("options") or []:
        option_id = normalize(option.get("option_id"))
        text = normalize(option.get("text"))
        if option.get("is_correct") or correct in (option_id, text):
            accepted.add(text)
            if option_id:
                accepted.add(option_id)
    accepted.discard("")
    return accepted


# ==================== EVALUATION ====================

def is_answer_correct(question: dict, answer: Any) -> bool:
    """True when the submitted answer matches the question's correct answer"""
    if _is_missing(answer):
        return False

    correct = question.get("correct_answer")
    if _is_missing(correct):
        logger.warning("Question %s has no correct answer; scoring as incorrect", question.get("question_id"))
        return False

    qtype = question.get("type", QuestionType.MCQ.value)

    if isinstance(correct, (list, tuple)):
        submitted = [resolve_option(question, v) for v in _as_list(answer)]
        expected = [resolve_option(question, v) for v in correct]
        return arrays_equal(submitted, expected)

    if qtype == QuestionType.MCQ:
        return resolve_option(question, answer) in accepted_answers(question)

    if qtype == QuestionType.TRUE_FALSE:
        submitted = resolve_option(question, answer)
        expected = resolve_option(question, correct)
        submitted_bool, expected_bool = to_bool(submitted), to_bool(expected)
        if submitted_bool is not None and expected_bool is not None:
            return submitted_bool == expected_bool
        return submitted == expected

    if qtype == QuestionType.INTEGER:
        submitted_int = parse_leading_int(answer)
        expected_int = parse_leading_int(correct)
        if submitted_int is None or expected_int is None:
            return False
        return submitted_int == expected_int

    return normalize(answer) == normalize(correct)


# ==================== SCORING ====================

def percentage(obtained: float, total: float) -> int:
    """Half-up rounded percentage; 0 for an empty test"""
    if total <= 0:
        return 0
    return int(math.floor(obtained / total * 100 + 0.5))


def is_passed(score_percentage: int, passing_score: Optional[int]) -> bool:
    threshold = passing_score or settings.DEFAULT_PASSING_SCORE
    return score_percentage >= threshold


def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    return max(1, int((now - started_at).total_seconds()))


def running_average(old_avg: float, old_count: int, new_value: float) -> float:
    return (old_avg * old_count + new_value) / (old_count + 1)


def score_attempt(questions: List[dict], answers: Dict[str, Any]) -> dict:
    """
    Score a full answer map against a test's questions

    Answers keyed by unknown question ids are ignored.
    """
    by_id = {str(q.get("question_id")): q for q in questions}
    correct_ids = set()
    for question_id, answer in answers.items():
        question = by_id.get(str(question_id))
        if question is None:
            continue
        if is_answer_correct(question, answer):
            correct_ids.add(str(question_id))

    results = []
    obtained = 0
    total = 0
    for question in questions:
        qid = str(question.get("question_id"))
        marks = question.get("marks", 1)
        total += marks
        correct = qid in correct_ids
        if correct:
            obtained += marks
        results.append({
            "question_id": qid,
            "submitted_answer": answers.get(qid),
            "correct_answer": question.get("correct_answer"),
            "is_correct": correct,
            "marks": marks,
            "marks_awarded": marks if correct else 0,
            "explanation": question.get("explanation"),
        })

    return {
        "obtained_marks": obtained,
        "total_marks": total,
        "correct_answers": len(correct_ids),
        "total_questions": len(questions),
        "percentage": percentage(obtained, total),
        "results": results,
    }
