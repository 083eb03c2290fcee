"""
Auto-grade a finished exam session and write the grades back.
Essays are left for manual grading; rows with missing or malformed questions are skipped.

Run: python grade_session.py SESSION_ID
     python grade_session.py SESSION_ID --from-file export.json --output graded.json
     python grade_session.py SESSION_ID --dry-run --json
"""
import argparse
import json
import logging
import sys
from pathlib import Path

from engine import GRADING_LOG_LEVEL
from src.engine import grade_session
from src.json_store import JsonStore


def open_store(from_file: Path | None):
    if from_file is not None:
        return JsonStore.from_file(from_file)
    from src.database import DatabaseClient
    return DatabaseClient()


def print_report(report: dict):
    print()
    print("=" * 60)
    print(f"SESSION {report['session_id']}")
    print("=" * 60)
    print(f"  Answers:         {report['answers_total']}")
    print(f"  Auto-graded:     {report['graded_count']}")
    print(f"  Pending manual:  {report['pending_manual_count']}")
    print(f"  Ungraded:        {report['ungraded_count']}")
    print(f"  Score:           {report['score_earned']:.2f} / {report['score_total']:.2f} ({report['percentage']:.1f}%)")
    print("\n--- By question type ---")
    for qtype, stats in sorted(report["type_breakdown"].items()):
        print(f"  {qtype:<16} {stats['count']:3d} answers  {stats['earned']:6.2f} / {stats['possible']:.2f}")
    print("\n--- Answers ---")
    for row in report["answers"]:
        answer_id = str(row["answer_id"] or "?")[:8]
        print(f"  {answer_id:<8}  {str(row['question_type'] or '?'):<16} {row['status']:<15} {row['points']:.2f}")
    print()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Auto-grade the answers of a finished exam session.")
    parser.add_argument("session_id", help="exam_sessions.id to grade")
    parser.add_argument("--from-file", type=Path, default=None, metavar="PATH", help="Grade from a JSON export instead of Supabase")
    parser.add_argument("--output", type=Path, default=None, metavar="PATH", help="With --from-file: write graded rows here")
    parser.add_argument("--dry-run", action="store_true", help="Score only, do not save grades")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--log-level", default=GRADING_LOG_LEVEL, help=f"Logging level (default {GRADING_LOG_LEVEL})")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s: %(message)s")

    try:
        store = open_store(args.from_file)
    except (OSError, ValueError) as e:
        print(f"Could not open store: {e}", file=sys.stderr)
        return 1

    report = grade_session(store, args.session_id, persist=not args.dry_run)
    if report["answers_total"] == 0:
        print(f"No answers found for session {args.session_id}", file=sys.stderr)
        return 1

    if args.output is not None and isinstance(store, JsonStore) and not args.dry_run:
        store.dump(args.output)

    if args.json:
        print(json.dumps(report, indent=2, default=str))
    else:
        print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
