#!/usr/bin/env python3
"""
Session grading workflow with in-memory stores:
1. Scoring every answer of a finished session
2. Essays left pending, malformed / missing questions skipped
3. Grade persistence and the grade_session CLI
"""
import json
import logging

import pytest

import grade_session
from engine import STATUS_GRADED, STATUS_PENDING_MANUAL, STATUS_UNGRADED
from src.engine import grade_session as run_grading
from src.json_store import JsonStore

logger = logging.getLogger(__name__)

SESSION_ID = "s-1"

QUESTIONS = [
    {
        "id": "q-mc", "question_type": "multiple_choice", "points": 2,
        "options": [{"id": "a", "is_correct": False}, {"id": "b", "is_correct": True}],
    },
    {
        "id": "q-ms", "question_type": "multiple_select", "points": 4,
        "options": [
            {"id": "A", "is_correct": True}, {"id": "B", "is_correct": True},
            {"id": "C", "is_correct": False}, {"id": "D", "is_correct": False},
        ],
    },
    {
        "id": "q-match", "question_type": "matching", "points": 10,
        "matching_pairs": [
            {"left_item": "H", "right_item": "Hydrogen"},
            {"left_item": "O", "right_item": "Oxygen"},
            {"left_item": "N", "right_item": "Nitrogen"},
            {"left_item": "C", "right_item": "Carbon"},
            {"left_item": "He", "right_item": "Helium"},
        ],
    },
    {
        "id": "q-short", "question_type": "short_answer", "points": 1,
        "short_answer_keys": [{"correct_answer": "Paris", "is_case_sensitive": False}],
    },
    {"id": "q-essay", "question_type": "essay", "points": 10},
    {"id": "q-broken", "question_type": "multiple_choice", "points": 1},
]

ANSWERS = [
    {"id": "a1", "session_id": SESSION_ID, "question_id": "q-mc", "selected_options": ["b"]},
    {"id": "a2", "session_id": SESSION_ID, "question_id": "q-ms", "selected_options": ["A"]},
    {
        "id": "a3", "session_id": SESSION_ID, "question_id": "q-match",
        "matching_answers": {"H": "Hydrogen", "O": "Oxygen", "N": "Nitrogen", "C": "Calcium", "Xe": "Xenon"},
    },
    {"id": "a4", "session_id": SESSION_ID, "question_id": "q-short", "answer_text": " PARIS "},
    {"id": "a5", "session_id": SESSION_ID, "question_id": "q-essay", "answer_text": "It depends."},
    {"id": "a6", "session_id": SESSION_ID, "question_id": "q-broken", "selected_options": ["x"]},
    {"id": "a7", "session_id": SESSION_ID, "question_id": "q-gone", "selected_options": ["x"]},
    {"id": "b1", "session_id": "other", "question_id": "q-mc", "selected_options": ["b"]},
]


class RecordingStore:
    """Dict-backed store that remembers what the grader asked it to save."""

    def __init__(self, questions, answers):
        self.questions = {q["id"]: q for q in questions}
        self.answers = answers
        self.saved = {}
        self.graded_sessions = []

    def get_question(self, question_id):
        return self.questions.get(question_id)

    def get_answers(self, session_id):
        return [a for a in self.answers if a["session_id"] == session_id]

    def save_grade(self, answer_row, result):
        self.saved[answer_row["id"]] = result
        return True

    def mark_session_graded(self, session_id):
        self.graded_sessions.append(session_id)
        return True


def answers_by_id(report):
    return {row["answer_id"]: row for row in report["answers"]}


def test_session_workflow():
    store = RecordingStore(QUESTIONS, [dict(a) for a in ANSWERS])
    report = run_grading(store, SESSION_ID)
    rows = answers_by_id(report)

    logger.info(f"Session report: {report['score_earned']}/{report['score_total']}")

    assert report["answers_total"] == 7
    assert report["graded_count"] == 4
    assert report["pending_manual_count"] == 1
    assert report["ungraded_count"] == 2

    assert rows["a1"]["points"] == pytest.approx(2)
    assert rows["a2"]["points"] == pytest.approx(2)
    assert rows["a3"]["points"] == pytest.approx(6)
    assert rows["a4"]["points"] == pytest.approx(1)
    assert rows["a5"]["status"] == STATUS_PENDING_MANUAL
    assert rows["a6"]["status"] == STATUS_UNGRADED
    assert rows["a7"]["status"] == STATUS_UNGRADED

    # Essay and ungraded rows are excluded from the auto-graded totals
    assert report["score_earned"] == pytest.approx(11)
    assert report["score_total"] == pytest.approx(17)
    assert report["percentage"] == pytest.approx(11 / 17 * 100)
    assert report["type_breakdown"]["matching"] == {"count": 1, "earned": 6.0, "possible": 10.0}
    assert "essay" not in report["type_breakdown"]


def test_ungraded_rows_are_not_saved_and_session_stays_open():
    store = RecordingStore(QUESTIONS, [dict(a) for a in ANSWERS])
    run_grading(store, SESSION_ID)

    assert set(store.saved) == {"a1", "a2", "a3", "a4", "a5"}
    assert store.saved["a1"].status == STATUS_GRADED
    assert store.saved["a5"].status == STATUS_PENDING_MANUAL
    assert store.graded_sessions == []


def test_fully_auto_graded_session_is_marked_graded():
    answers = [a for a in ANSWERS if a["id"] in ("a1", "a2", "b1")]
    store = RecordingStore(QUESTIONS, answers)
    report = run_grading(store, SESSION_ID)

    assert report["graded_count"] == 2
    assert store.graded_sessions == [SESSION_ID]


def test_dry_run_saves_nothing():
    store = RecordingStore(QUESTIONS, [dict(a) for a in ANSWERS])
    first = run_grading(store, SESSION_ID, persist=False)
    second = run_grading(store, SESSION_ID, persist=False)

    assert store.saved == {}
    assert store.graded_sessions == []
    assert first["answers"] == second["answers"]


def test_empty_session():
    report = run_grading(RecordingStore(QUESTIONS, []), SESSION_ID)
    assert report["answers_total"] == 0
    assert report["percentage"] == 0.0


# ============= JSON store + CLI =============

@pytest.fixture
def export_file(tmp_path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"questions": QUESTIONS, "answers": ANSWERS}), encoding="utf-8")
    return path


def test_json_store_saves_only_auto_grades(export_file):
    store = JsonStore.from_file(export_file)
    run_grading(store, SESSION_ID)
    rows = {a["id"]: a for a in store.answers}

    assert rows["a1"]["points_awarded"] == 2
    assert rows["a1"]["is_auto_graded"] is True
    assert rows["a2"]["points_awarded"] == 2
    assert "points_awarded" not in rows["a5"]
    assert "points_awarded" not in rows["a6"]
    assert "points_awarded" not in rows["b1"]


def test_json_store_rejects_wrong_shape(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps([1, 2, 3]), encoding="utf-8")
    with pytest.raises(ValueError):
        JsonStore.from_file(path)


def test_cli_writes_graded_export(export_file, tmp_path, capsys):
    output = tmp_path / "graded.json"
    code = grade_session.main([SESSION_ID, "--from-file", str(export_file), "--output", str(output), "--json"])
    assert code == 0

    report = json.loads(capsys.readouterr().out)
    assert report["graded_count"] == 4
    assert report["score_earned"] == pytest.approx(11)

    graded = json.loads(output.read_text(encoding="utf-8"))
    rows = {a["id"]: a for a in graded["answers"]}
    assert rows["a3"]["points_awarded"] == 6
    assert rows["a3"]["is_auto_graded"] is True


def test_cli_text_report_and_missing_session(export_file, capsys):
    assert grade_session.main([SESSION_ID, "--from-file", str(export_file), "--dry-run"]) == 0
    out = capsys.readouterr().out
    assert f"SESSION {SESSION_ID}" in out
    assert "pending_manual" in out

    assert grade_session.main(["nope", "--from-file", str(export_file)]) == 1


def test_cli_missing_file(tmp_path):
    assert grade_session.main([SESSION_ID, "--from-file", str(tmp_path / "missing.json")]) == 1


# ============= Failure paths =============

class FlakyStore(RecordingStore):
    """Raises for one question id; optionally refuses every save."""

    def __init__(self, questions, answers, broken_question=None, saves_fail=False):
        super().__init__(questions, answers)
        self.broken_question = broken_question
        self.saves_fail = saves_fail

    def get_question(self, question_id):
        if question_id == self.broken_question:
            raise RuntimeError("row decode failed")
        return super().get_question(question_id)

    def save_grade(self, answer_row, result):
        if self.saves_fail:
            return False
        return super().save_grade(answer_row, result)


def test_bad_row_does_not_stop_the_batch():
    questions = [
        {
            "id": "q-odd", "question_type": "multiple_choice", "points": 1,
            "options": [{"id": "x", "is_correct": True, "sort_order": "1"}, {"id": "y", "sort_order": 2}],
        },
        QUESTIONS[0],
        QUESTIONS[1],
    ]
    answers = [
        {"id": "bad", "session_id": SESSION_ID, "question_id": "q-ms", "selected_options": ["A"]},
        {"id": "odd", "session_id": SESSION_ID, "question_id": "q-odd", "selected_options": ["x"]},
        {"id": "good", "session_id": SESSION_ID, "question_id": "q-mc", "selected_options": ["b"]},
    ]
    store = FlakyStore(questions, answers, broken_question="q-ms")
    report = run_grading(store, SESSION_ID, persist=False)
    rows = answers_by_id(report)

    assert rows["bad"]["status"] == STATUS_UNGRADED
    assert rows["odd"]["points"] == pytest.approx(1)
    assert rows["good"]["points"] == pytest.approx(2)
    assert report["graded_count"] == 2


def test_failed_save_keeps_session_open():
    answers = [a for a in ANSWERS if a["id"] in ("a1", "a2")]
    store = FlakyStore(QUESTIONS, answers, saves_fail=True)
    report = run_grading(store, SESSION_ID)

    assert report["graded_count"] == 2
    assert store.graded_sessions == []
