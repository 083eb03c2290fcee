"""
Question and answer models for the grading engine.
Questions and answers are tagged unions keyed by question_type; each variant carries
only the fields that type can be graded with. Rows come from the Supabase tables
questions (+ question_options, matching_pairs, short_answer_keys) and student_answers.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple, Union

from engine import (
    DEFAULT_POINTS,
    MATCHING,
    MULTIPLE_CHOICE,
    MULTIPLE_SELECT,
    QUESTION_TYPES,
    SHORT_ANSWER,
)

logger = logging.getLogger(__name__)


class MalformedRecordError(ValueError):
    """A stored question or answer row cannot be turned into a gradable model."""


# ============= Correct-answer data =============

@dataclass(frozen=True)
class Option:
    id: str
    is_correct: bool = False


@dataclass(frozen=True)
class MatchingPair:
    left_item: str
    right_item: str


@dataclass(frozen=True)
class AnswerKey:
    text: str
    is_case_sensitive: bool = False


# ============= Questions =============

@dataclass(frozen=True)
class MultipleChoiceQuestion:
    id: str
    points: int = DEFAULT_POINTS
    options: Tuple[Option, ...] = ()


@dataclass(frozen=True)
class MultipleSelectQuestion:
    id: str
    points: int = DEFAULT_POINTS
    options: Tuple[Option, ...] = ()


@dataclass(frozen=True)
class MatchingQuestion:
    id: str
    points: int = DEFAULT_POINTS
    pairs: Tuple[MatchingPair, ...] = ()


@dataclass(frozen=True)
class ShortAnswerQuestion:
    id: str
    points: int = DEFAULT_POINTS
    keys: Tuple[AnswerKey, ...] = ()  # stored order matters: first match wins


@dataclass(frozen=True)
class EssayQuestion:
    id: str
    points: int = DEFAULT_POINTS


Question = Union[
    MultipleChoiceQuestion,
    MultipleSelectQuestion,
    MatchingQuestion,
    ShortAnswerQuestion,
    EssayQuestion,
]


# ============= Answers =============

@dataclass(frozen=True)
class SelectionAnswer:
    """Selected option ids for multiple_choice / multiple_select."""
    question_id: str
    selected_option_ids: frozenset = frozenset()
    id: Optional[str] = None

    def __post_init__(self):
        ids = self.selected_option_ids
        if not isinstance(ids, frozenset):
            items = ids if isinstance(ids, (list, tuple, set)) else ()
            ids = frozenset(str(i) for i in items if i is not None)
            object.__setattr__(self, "selected_option_ids", ids)


@dataclass(frozen=True)
class MatchingAnswer:
    """Student's proposed matches, left item -> right item."""
    question_id: str
    matches: Dict[str, str] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass(frozen=True)
class TextAnswer:
    """Free text for short_answer / essay."""
    question_id: str
    text: str = ""
    id: Optional[str] = None


Answer = Union[SelectionAnswer, MatchingAnswer, TextAnswer]


# ============= Row parsing =============

def _parse_points(raw) -> int:
    # Mirrors `question.points || 1`: null and 0 fall back to the default.
    if raw is None or raw == 0:
        return DEFAULT_POINTS
    if isinstance(raw, bool):
        raise MalformedRecordError(f"Invalid points value: {raw!r}")
    if isinstance(raw, float) and raw.is_integer():
        raw = int(raw)
    if not isinstance(raw, int) or raw < 0:
        raise MalformedRecordError(f"Invalid points value: {raw!r}")
    return raw


def _require_list(row: Dict, key: str) -> list:
    value = row.get(key)
    if not isinstance(value, list):
        raise MalformedRecordError(f"Question {row.get('id')} has no '{key}' list")
    return value


def _parse_flag(row: Dict, item: Dict, key: str) -> bool:
    # null means false; strings such as "false" are not booleans
    value = item.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise MalformedRecordError(f"Question {row.get('id')} has non-boolean {key}: {value!r}")
    return value


def _parse_options(row: Dict) -> Tuple[Option, ...]:
    items = _require_list(row, "options")
    options = []
    for item in items:
        if not isinstance(item, dict) or item.get("id") is None:
            raise MalformedRecordError(f"Question {row.get('id')} has an option without id")
        options.append(Option(id=str(item["id"]), is_correct=_parse_flag(row, item, "is_correct")))
    return tuple(options)


def _parse_pairs(row: Dict) -> Tuple[MatchingPair, ...]:
    pairs = []
    for item in _require_list(row, "matching_pairs"):
        if not isinstance(item, dict):
            raise MalformedRecordError(f"Question {row.get('id')} has a malformed matching pair")
        left, right = item.get("left_item"), item.get("right_item")
        if not isinstance(left, str) or not isinstance(right, str):
            raise MalformedRecordError(f"Question {row.get('id')} has a matching pair with missing items")
        pairs.append(MatchingPair(left_item=left, right_item=right))
    return tuple(pairs)


def _parse_keys(row: Dict) -> Tuple[AnswerKey, ...]:
    keys = []
    for item in _require_list(row, "short_answer_keys"):
        if not isinstance(item, dict) or not isinstance(item.get("correct_answer"), str):
            raise MalformedRecordError(f"Question {row.get('id')} has a malformed short answer key")
        keys.append(AnswerKey(
            text=item["correct_answer"],
            is_case_sensitive=_parse_flag(row, item, "is_case_sensitive"),
        ))
    return tuple(keys)


def question_from_row(row: Dict) -> Question:
    """
    Build a typed question from a questions row with embedded correct-answer data.

    Expected keys: id, question_type, points, and depending on the type
    options / matching_pairs / short_answer_keys (as embedded by Supabase).

    Raises:
        MalformedRecordError: unknown type, invalid points, or missing answer data.
            An empty answer-data list is valid and grades to zero.
    """
    if not isinstance(row, dict) or row.get("id") is None:
        raise MalformedRecordError("Question row is missing or has no id")

    question_id = str(row["id"])
    question_type = row.get("question_type")
    if question_type not in QUESTION_TYPES:
        raise MalformedRecordError(f"Question {question_id} has unknown type {question_type!r}")
    points = _parse_points(row.get("points"))

    if question_type == MULTIPLE_CHOICE:
        return MultipleChoiceQuestion(id=question_id, points=points, options=_parse_options(row))
    if question_type == MULTIPLE_SELECT:
        return MultipleSelectQuestion(id=question_id, points=points, options=_parse_options(row))
    if question_type == MATCHING:
        return MatchingQuestion(id=question_id, points=points, pairs=_parse_pairs(row))
    if question_type == SHORT_ANSWER:
        return ShortAnswerQuestion(id=question_id, points=points, keys=_parse_keys(row))
    return EssayQuestion(id=question_id, points=points)


def answer_from_row(row: Dict, question: Question) -> Answer:
    """
    Build the answer variant the question's type expects from a student_answers row.

    A payload of the wrong shape (e.g. matching_answers on a multiple_choice question)
    becomes the empty payload, so it grades as "selected nothing".
    """
    answer_id = row.get("id")
    answer_id = str(answer_id) if answer_id is not None else None
    question_id = str(row.get("question_id") or question.id)

    if isinstance(question, (MultipleChoiceQuestion, MultipleSelectQuestion)):
        selected = row.get("selected_options")
        if not isinstance(selected, (list, tuple)):
            if selected is not None:
                logger.debug(f"Answer {answer_id}: ignoring non-list selected_options")
            selected = []
        ids = frozenset(str(s) for s in selected if s is not None)
        return SelectionAnswer(question_id=question_id, selected_option_ids=ids, id=answer_id)

    if isinstance(question, MatchingQuestion):
        matches = row.get("matching_answers")
        if not isinstance(matches, dict):
            if matches is not None:
                logger.debug(f"Answer {answer_id}: ignoring non-object matching_answers")
            matches = {}
        return MatchingAnswer(question_id=question_id, matches=dict(matches), id=answer_id)

    text = row.get("answer_text")
    return TextAnswer(question_id=question_id, text=text if isinstance(text, str) else "", id=answer_id)
