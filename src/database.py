"""
Database operations for the grading engine.
Reads finished-session answers and question answer keys from Supabase and writes grades back.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from supabase import Client

from db import get_supabase_client
from engine import SCORE_PRECISION, STATUS_GRADED, STATUS_PENDING_MANUAL

logger = logging.getLogger(__name__)

QUESTION_SELECT = "*, options:question_options(*), matching_pairs(*), short_answer_keys(*)"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class DatabaseClient:
    """Supabase-backed store for SessionGrader: question lookup, session answers, grade persistence."""

    def __init__(self, client: Optional[Client] = None):
        self.client: Client = client if client is not None else get_supabase_client()

    # ============= Questions =============

    def get_question(self, question_id) -> Optional[Dict]:
        """
        Fetch one question with its embedded correct-answer data.

        Returns:
            questions row with options, matching_pairs and short_answer_keys lists, or None
        """
        try:
            response = (
                self.client.table("questions")
                .select(QUESTION_SELECT)
                .eq("id", str(question_id))
                .limit(1)
                .execute()
            )
            return response.data[0] if response.data else None
        except Exception as e:
            logger.error(f"Error fetching question {question_id}: {e}")
            return None

    # ============= Answers =============

    def get_answers(self, session_id) -> List[Dict]:
        """Fetch all student_answers rows for a session."""
        try:
            response = (
                self.client.table("student_answers")
                .select("*")
                .eq("session_id", str(session_id))
                .execute()
            )
            return response.data if response.data else []
        except Exception as e:
            logger.error(f"Error fetching answers for session {session_id}: {e}")
            return []

    def save_grade(self, answer_row: Dict, result) -> bool:
        """
        Write an auto-grade back onto the answer row.

        Graded rows get points_awarded and is_auto_graded = true. Essays pending manual
        review are left untouched so an existing teacher grade is never overwritten.
        """
        answer_id = answer_row.get("id")
        if result.status == STATUS_PENDING_MANUAL:
            logger.debug(f"Answer {answer_id} awaits manual grading, nothing to save")
            return True
        if result.status != STATUS_GRADED:
            logger.warning(f"Refusing to save {result.status} result for answer {answer_id}")
            return False

        try:
            update_data = {
                "points_awarded": round(result.points, SCORE_PRECISION),
                "is_auto_graded": True,
                "graded_at": _now(),
                "updated_at": _now(),
            }
            self.client.table("student_answers").update(update_data).eq("id", str(answer_id)).execute()
            return True
        except Exception as e:
            logger.error(f"Error saving grade for answer {answer_id}: {e}")
            return False

    def record_manual_grade(
        self,
        answer_id,
        points: float,
        graded_by=None,
        teacher_comment: Optional[str] = None
    ) -> bool:
        """Store a teacher-assigned grade (validate it with apply_manual_grade first)."""
        try:
            update_data = {
                "points_awarded": round(float(points), SCORE_PRECISION),
                "is_auto_graded": False,
                "graded_by": str(graded_by) if graded_by is not None else None,
                "graded_at": _now(),
                "updated_at": _now(),
            }
            if teacher_comment is not None:
                update_data["teacher_comment"] = teacher_comment
            self.client.table("student_answers").update(update_data).eq("id", str(answer_id)).execute()
            return True
        except Exception as e:
            logger.error(f"Error recording manual grade for answer {answer_id}: {e}")
            return False

    # ============= Sessions =============

    def mark_session_graded(self, session_id) -> bool:
        """Flag a session as fully graded."""
        try:
            self.client.table("exam_sessions").update({"status": "graded"}).eq("id", str(session_id)).execute()
            return True
        except Exception as e:
            logger.error(f"Error marking session {session_id} graded: {e}")
            return False
