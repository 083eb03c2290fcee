"""Grading constants and settings. No I/O beyond reading the environment."""
# Statuses: graded (auto-scored), pending_manual (essay), ungraded (missing/malformed data)
# Short answer case mode: exact | lowercased
import os

from dotenv import load_dotenv

load_dotenv()

STATUS_GRADED = "graded"
STATUS_PENDING_MANUAL = "pending_manual"
STATUS_UNGRADED = "ungraded"

MULTIPLE_CHOICE = "multiple_choice"
MULTIPLE_SELECT = "multiple_select"
MATCHING = "matching"
SHORT_ANSWER = "short_answer"
ESSAY = "essay"
QUESTION_TYPES = (MULTIPLE_CHOICE, MULTIPLE_SELECT, MATCHING, SHORT_ANSWER, ESSAY)

DEFAULT_POINTS = 1
SCORE_PRECISION = 2  # student_answers.points_awarded is DECIMAL(5,2)

CASE_MODE_EXACT = "exact"
CASE_MODE_LOWERCASED = "lowercased"
SHORT_ANSWER_CASE_MODE = os.getenv("SHORT_ANSWER_CASE_MODE", CASE_MODE_EXACT).strip().lower()
GRADING_LOG_LEVEL = os.getenv("GRADING_LOG_LEVEL", "INFO").upper()
