from __future__ import annotations

import argparse

from branchportal import accounts, weeks
from branchportal.object_store import build_object_store
from branchportal.submission_store import SqlSubmissionStore, SubmissionRecord, build_submission_store
from branchportal.submissions import SubmissionSaveError, delete_week


def print_week_row(week: weeks.Week, record: SubmissionRecord) -> None:
    submitted = record.submitted_at or "-"
    print(
        f"{week.id}  {week.label:<16} {record.status.label:<8} "
        f"{len(record.files):>2} file(s)  {submitted:<22} {record.title or '-'}"
    )


def _branch_or_exit(branch_id: int) -> accounts.Branch:
    branch = accounts.get_branch(branch_id)
    if not branch:
        raise SystemExit(f"Branch {branch_id} not found")
    return branch


def cmd_weeks(ns: argparse.Namespace) -> None:
    for week in weeks.recent_weeks(ns.count):
        print(f"{week.id}  {week.label}")


def cmd_branches(ns: argparse.Namespace) -> None:
    for branch in accounts.BRANCHES:
        print(f"{branch.id:>3} {branch.code:<6} {branch.name}")


def cmd_show(ns: argparse.Namespace) -> None:
    branch = _branch_or_exit(ns.branch_id)
    window = weeks.recent_weeks()
    records = build_submission_store().get_records(branch.id, [week.id for week in window])
    print(f"{branch.code} {branch.name}")
    for week in window:
        print_week_row(week, records[week.id])


def cmd_matrix(ns: argparse.Namespace) -> None:
    window = weeks.recent_weeks(ns.weeks)
    matrix = build_submission_store().get_matrix(
        [branch.id for branch in accounts.BRANCHES],
        [week.id for week in window],
    )
    print(f"{'branch':<12}" + "".join(f"{week.id:>12}" for week in window))
    for branch in accounts.BRANCHES:
        cells = "".join(f"{matrix[branch.id][week.id].status.value:>12}" for week in window)
        print(f"{branch.code + ' ' + branch.name:<12}{cells}")


def cmd_reset(ns: argparse.Namespace) -> None:
    branch = _branch_or_exit(ns.branch_id)
    try:
        weeks.parse_week_id(ns.week_id)
    except ValueError as exc:
        raise SystemExit(str(exc))
    try:
        outcome = delete_week(build_submission_store(), build_object_store(), branch.id, ns.week_id)
    except SubmissionSaveError as exc:
        raise SystemExit(f"Reset failed: {exc}")
    print(f"Reset {branch.code} {ns.week_id}: removed {outcome.objects_removed} object(s)")
    if outcome.storage_error:
        print("Warning: some stored files could not be removed")


def cmd_normalize_files(ns: argparse.Namespace) -> None:
    store = build_submission_store()
    if not isinstance(store, SqlSubmissionStore):
        raise SystemExit("normalize-files needs PORTAL_STORE=sqlite or postgres")
    changed = store.normalize_file_encodings()
    print(f"Normalised {changed} row(s)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Operate the branch reporting portal")
    sub = parser.add_subparsers(dest="command", required=True)

    p_weeks = sub.add_parser("weeks", help="Print the rolling week window")
    p_weeks.add_argument("--count", type=int)
    p_weeks.set_defaults(func=cmd_weeks, count=None)

    p_branches = sub.add_parser("branches", help="List branches")
    p_branches.set_defaults(func=cmd_branches)

    p_show = sub.add_parser("show", help="Show one branch's recent submissions")
    p_show.add_argument("branch_id", type=int)
    p_show.set_defaults(func=cmd_show)

    p_matrix = sub.add_parser("matrix", help="Status grid for every branch")
    p_matrix.add_argument("--weeks", type=int, default=4)
    p_matrix.set_defaults(func=cmd_matrix)

    p_reset = sub.add_parser("reset", help="Delete a week's submission and its files")
    p_reset.add_argument("branch_id", type=int)
    p_reset.add_argument("week_id")
    p_reset.set_defaults(func=cmd_reset)

    p_normalize = sub.add_parser("normalize-files", help="Rewrite stored attachment lists in the current encoding")
    p_normalize.set_defaults(func=cmd_normalize_files)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
