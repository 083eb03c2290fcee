"""File-backed store: grade sessions from a JSON export instead of a live Supabase project."""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from engine import SCORE_PRECISION, STATUS_GRADED

logger = logging.getLogger(__name__)


class JsonStore:
    """
    In-memory store loaded from {"questions": [...], "answers": [...]}.

    Rows use the same shape as the Supabase tables: questions carry embedded
    options / matching_pairs / short_answer_keys, answers are student_answers rows.
    """

    def __init__(self, questions: List[Dict], answers: List[Dict]):
        self.questions: Dict[str, Dict] = {}
        for row in questions:
            if row.get("id") is None:
                logger.warning("Skipping question row without id")
                continue
            self.questions[str(row["id"])] = row
        self.answers: List[Dict] = list(answers)
        self.graded_sessions: set = set()

    @classmethod
    def from_file(cls, path) -> "JsonStore":
        """Load a JSON export. Raises ValueError if the document has the wrong shape."""
        path = Path(path)
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected an object with 'questions' and 'answers'")
        questions = data.get("questions") or []
        answers = data.get("answers") or []
        if not isinstance(questions, list) or not isinstance(answers, list):
            raise ValueError(f"{path}: 'questions' and 'answers' must be lists")
        logger.info(f"Loaded {len(questions)} questions and {len(answers)} answers from {path}")
        return cls(questions, answers)

    def get_question(self, question_id) -> Optional[Dict]:
        return self.questions.get(str(question_id))

    def get_answers(self, session_id) -> List[Dict]:
        return [a for a in self.answers if str(a.get("session_id")) == str(session_id)]

    def save_grade(self, answer_row: Dict, result) -> bool:
        if result.status != STATUS_GRADED:
            return True
        answer_row["points_awarded"] = round(result.points, SCORE_PRECISION)
        answer_row["is_auto_graded"] = True
        answer_row["graded_at"] = datetime.now(timezone.utc).isoformat()
        return True

    def mark_session_graded(self, session_id) -> bool:
        self.graded_sessions.add(str(session_id))
        return True

    def dump(self, path) -> None:
        """Write questions and (graded) answers back out."""
        path = Path(path)
        payload = {"questions": list(self.questions.values()), "answers": self.answers}
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        logger.info(f"Wrote {len(self.answers)} answers to {path}")
