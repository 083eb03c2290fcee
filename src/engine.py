"""
Grading Engine: per-type scorers, dispatch, and batch grading of a finished session.
Scoring is a pure function of (answer, question); the session grader reads rows from an
injected store and hands results back to it for persistence.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from engine import (
    CASE_MODE_EXACT,
    CASE_MODE_LOWERCASED,
    SHORT_ANSWER_CASE_MODE,
    STATUS_GRADED,
    STATUS_PENDING_MANUAL,
    STATUS_UNGRADED,
)
from src.models import (
    Answer,
    EssayQuestion,
    MalformedRecordError,
    MatchingAnswer,
    MatchingQuestion,
    MultipleChoiceQuestion,
    MultipleSelectQuestion,
    Question,
    SelectionAnswer,
    ShortAnswerQuestion,
    TextAnswer,
    answer_from_row,
    question_from_row,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GradeResult:
    """Score for one answer. points is only meaningful when status is graded."""
    points: float
    status: str

    @property
    def is_auto_graded(self) -> bool:
        return self.status == STATUS_GRADED

    def to_dict(self) -> Dict:
        return {"points": self.points, "status": self.status}


UNGRADED = GradeResult(points=0.0, status=STATUS_UNGRADED)
PENDING_MANUAL = GradeResult(points=0.0, status=STATUS_PENDING_MANUAL)


def _share(points: int, numerator: int, denominator: int) -> float:
    """points * numerator / denominator, multiplied first so whole results stay exact."""
    return float(Decimal(numerator) * Decimal(points) / Decimal(denominator))


# ============= Scorers =============

def score_multiple_choice(answer: Answer, question: MultipleChoiceQuestion) -> float:
    """Full points if exactly one option is selected and it is the correct one, else 0."""
    selected = answer.selected_option_ids if isinstance(answer, SelectionAnswer) else frozenset()
    correct = next((o.id for o in question.options if o.is_correct), None)
    if correct is None or len(selected) != 1:
        return 0.0
    return float(question.points) if correct in selected else 0.0


def score_multiple_select(answer: Answer, question: MultipleSelectQuestion) -> float:
    """
    Partial credit where each incorrect selection cancels one correct selection.

    Formula: max(0, (correct_selected - incorrect_selected) / n_correct) * points
    """
    correct_ids = {o.id for o in question.options if o.is_correct}
    if not correct_ids:
        return 0.0

    selected = answer.selected_option_ids if isinstance(answer, SelectionAnswer) else frozenset()
    correct_selected = len(selected & correct_ids)
    incorrect_selected = len(selected) - correct_selected

    net = correct_selected - incorrect_selected
    if net <= 0:
        return 0.0
    return _share(question.points, net, len(correct_ids))


def score_matching(answer: Answer, question: MatchingQuestion) -> float:
    """
    Partial credit for each correctly matched pair: correct / total_pairs * points.
    Student keys that are not in the answer key are ignored (no penalty).
    """
    if not question.pairs:
        return 0.0

    matches = answer.matches if isinstance(answer, MatchingAnswer) else {}
    correct_count = sum(1 for pair in question.pairs if matches.get(pair.left_item) == pair.right_item)
    return _share(question.points, correct_count, len(question.pairs))


def resolve_case_mode(mode: Optional[str] = None) -> str:
    # The legacy web client lower-cased the key too, even for case-sensitive keys,
    # which makes every key case-insensitive. Neither mode reproduces that.
    mode = (mode or SHORT_ANSWER_CASE_MODE or CASE_MODE_EXACT).strip().lower()
    if mode not in (CASE_MODE_EXACT, CASE_MODE_LOWERCASED):
        logger.warning(f"Unknown short answer case mode {mode!r}, using {CASE_MODE_EXACT!r}")
        return CASE_MODE_EXACT
    return mode


def score_short_answer(answer: Answer, question: ShortAnswerQuestion, case_mode: Optional[str] = None) -> float:
    """
    Full points on the first answer key that matches, in stored order; 0 otherwise.

    The student's text is trimmed. Case-insensitive keys compare lower-cased on both sides.
    Case-sensitive keys compare against the raw key text:
      - "exact": the trimmed student text keeps its case
      - "lowercased": the trimmed student text is lower-cased first, so only
        lower-case keys can ever match
    """
    mode = resolve_case_mode(case_mode)
    raw = answer.text if isinstance(answer, TextAnswer) else ""
    trimmed = raw.strip()
    lowered = trimmed.lower()

    for key in question.keys:
        if key.is_case_sensitive:
            candidate = trimmed if mode == CASE_MODE_EXACT else lowered
            if candidate == key.text:
                return float(question.points)
        elif lowered == key.text.lower():
            return float(question.points)
    return 0.0


_SCORERS = {
    MultipleChoiceQuestion: score_multiple_choice,
    MultipleSelectQuestion: score_multiple_select,
    MatchingQuestion: score_matching,
    ShortAnswerQuestion: score_short_answer,
}


# ============= Dispatch =============

def score(answer: Optional[Answer], question: Optional[Question]) -> GradeResult:
    """
    Grade one answer against its question.

    Returns:
        GradeResult with status pending_manual for essays, ungraded when either
        side is missing, graded otherwise. Never raises on bad data.
    """
    if question is None or answer is None:
        return UNGRADED
    if isinstance(question, EssayQuestion):
        return PENDING_MANUAL

    scorer = _SCORERS.get(type(question))
    if scorer is None:
        logger.warning(f"No scorer for question {getattr(question, 'id', '?')} ({type(question).__name__})")
        return UNGRADED

    try:
        points = scorer(answer, question)
    except (TypeError, AttributeError) as e:
        logger.warning(f"Question {question.id} left ungraded, unusable answer payload: {e}")
        return UNGRADED
    points = min(max(points, 0.0), float(question.points))
    return GradeResult(points=points, status=STATUS_GRADED)


def score_row(answer_row: Optional[Dict], question_row: Optional[Dict]) -> GradeResult:
    """Grade stored rows (student_answers + questions). Malformed rows come back ungraded."""
    if not answer_row or not question_row:
        return UNGRADED
    try:
        question = question_from_row(question_row)
        answer = answer_from_row(answer_row, question)
    except MalformedRecordError as e:
        logger.warning(f"Answer {answer_row.get('id')} left ungraded: {e}")
        return UNGRADED
    return score(answer, question)


def apply_manual_grade(question: Question, points) -> float:
    """
    Validate a teacher-assigned score for an essay (or a manual override).

    Raises:
        ValueError: points is not a number within [0, question.points]
    """
    try:
        value = float(points)
    except (TypeError, ValueError):
        raise ValueError(f"Manual grade must be a number, got {points!r}")
    if not 0 <= value <= question.points:
        raise ValueError(f"Manual grade {value} outside 0..{question.points} for question {question.id}")
    return value


# ============= Session grading =============

class SessionGrader:
    """
    Grades every answer of one finished session through an injected store.

    The store needs:
        get_answers(session_id) -> list of student_answers rows
        get_question(question_id) -> questions row with embedded answer data, or None
        save_grade(answer_row, result) -> bool
        mark_session_graded(session_id) -> bool   (optional)
    """

    def __init__(self, store, session_id):
        self.store = store
        self.session_id = session_id
        self.results: List[Dict] = []

    def _grade_one(self, answer_row: Dict) -> Dict:
        question_id = answer_row.get("question_id")
        question_row = None
        try:
            question_row = self.store.get_question(question_id) if question_id is not None else None
            if question_row is None:
                logger.warning(f"Answer {answer_row.get('id')}: question {question_id} not found, skipping")
            result = score_row(answer_row, question_row)
        except Exception as e:
            logger.error(f"Error grading answer {answer_row.get('id')}: {e}")
            result = UNGRADED
        if not isinstance(question_row, dict):
            question_row = None

        return {
            "answer_id": answer_row.get("id"),
            "question_id": question_id,
            "question_type": (question_row or {}).get("question_type"),
            "max_points": (question_row or {}).get("points"),
            "result": result,
        }

    def run(self, persist: bool = True) -> Dict:
        """
        Grade all answers and optionally persist each result.

        Returns:
            Session report: counts per status, auto-graded score, per-type breakdown
        """
        answers = self.store.get_answers(self.session_id) or []
        logger.info(f"Grading session {self.session_id}: {len(answers)} answers")

        self.results = []
        save_failed = False
        for answer_row in answers:
            graded = self._grade_one(answer_row)
            self.results.append(graded)
            if persist and graded["result"].status != STATUS_UNGRADED:
                if not self.store.save_grade(answer_row, graded["result"]):
                    logger.error(f"Could not save grade for answer {answer_row.get('id')}")
                    save_failed = True

        report = build_session_report(self.session_id, self.results)

        if save_failed:
            logger.error(f"Session {self.session_id} left open: some grades were not saved")
        elif persist and answers and report["pending_manual_count"] == 0 and report["ungraded_count"] == 0:
            mark = getattr(self.store, "mark_session_graded", None)
            if mark is not None:
                mark(self.session_id)

        logger.info(
            f"Session {self.session_id} graded: {report['score_earned']}/{report['score_total']} "
            f"(pending manual={report['pending_manual_count']}, ungraded={report['ungraded_count']})"
        )
        return report


def build_session_report(session_id, results: List[Dict]) -> Dict:
    """Summarize per-answer results. Essays and ungraded rows are excluded from the totals."""
    earned = Decimal("0")
    possible = Decimal("0")
    counts = {STATUS_GRADED: 0, STATUS_PENDING_MANUAL: 0, STATUS_UNGRADED: 0}
    breakdown = defaultdict(lambda: {"count": 0, "earned": 0.0, "possible": 0.0})
    rows = []

    for item in results:
        result: GradeResult = item["result"]
        counts[result.status] += 1
        rows.append({
            "answer_id": item.get("answer_id"),
            "question_id": item.get("question_id"),
            "question_type": item.get("question_type"),
            **result.to_dict(),
        })
        if result.status != STATUS_GRADED:
            continue

        max_points = Decimal(str(item.get("max_points") or 1))
        earned += Decimal(str(result.points))
        possible += max_points

        stats = breakdown[item.get("question_type") or "unknown"]
        stats["count"] += 1
        stats["earned"] += result.points
        stats["possible"] += float(max_points)

    return {
        "session_id": str(session_id),
        "answers_total": len(results),
        "graded_count": counts[STATUS_GRADED],
        "pending_manual_count": counts[STATUS_PENDING_MANUAL],
        "ungraded_count": counts[STATUS_UNGRADED],
        "score_earned": float(earned),
        "score_total": float(possible),
        "percentage": float(earned / possible * 100) if possible > 0 else 0.0,
        "type_breakdown": dict(breakdown),
        "answers": rows,
        "graded_at": datetime.now(timezone.utc).isoformat(),
    }


def grade_session(store, session_id, persist: bool = True) -> Dict:
    """Grade one finished session. See SessionGrader."""
    return SessionGrader(store, session_id).run(persist=persist)
