from __future__ import annotations

import argparse
import logging
import sys
import threading
from decimal import Decimal, InvalidOperation
from pathlib import Path
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from listmerge.adapters.tables import is_table_file
from listmerge.app import (
    build_merge_settings,
    list_templates,
    load_templates,
    merge_files,
    show_template,
)
from listmerge.config import ConfigurationError, configure_logging
from listmerge.domain.merging import MergeCancelledError, MergeSettingsError
from listmerge.domain.model import ConflictPolicy, HeaderPosition

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from listmerge.app import FuzzyKey
    from listmerge.domain.merging import MergeSettings

log = logging.getLogger(__name__)

_cancel = threading.Event()


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Merge tables with differing headers into one de-duplicated list"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log per-record matching decisions",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    merge = subparsers.add_parser("merge", help="Merge CSV/Excel files")
    merge.add_argument("files", nargs="+", type=Path, help="Input tables, in processing order")
    merge.add_argument(
        "--template",
        type=str,
        required=True,
        help="Header template id mapping the columns of every file",
    )
    merge.add_argument(
        "--key",
        action="append",
        default=[],
        help="Canonical field identifying a record (repeatable)",
    )
    merge.add_argument(
        "--fuzzy",
        action="append",
        default=[],
        metavar="FIELD[:THRESHOLD]",
        help="Compare a key field by similarity instead of equality (repeatable)",
    )
    merge.add_argument(
        "--policy",
        type=str,
        help="Conflict policy: prefer_first_source, prefer_longest or prefer_most_frequent",
    )
    merge.add_argument(
        "--threshold",
        type=float,
        help="Minimum overall similarity for a record to join a cluster (defaults to config)",
    )
    merge.add_argument("--settings", type=Path, help="JSON merge settings file")
    merge.add_argument("--output", type=Path, help="Write the merged table (.csv or .xlsx)")
    merge.add_argument(
        "--report",
        action="store_true",
        help="Also write a <output>.report.json with conflicts and issues",
    )
    merge.add_argument(
        "--header-position",
        type=HeaderPosition.parse,
        choices=list(HeaderPosition),
        help="Whether the header row is the first or the last row (default: from the template)",
    )
    merge.add_argument(
        "--expect-rows",
        type=int,
        metavar="N",
        help="Report a ROW_COUNT_MISMATCH unless the merge accounts for N input rows",
    )
    merge.add_argument(
        "--expect-sum",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Report a SUM_MISMATCH unless FIELD sums to VALUE (repeatable)",
    )
    merge.add_argument(
        "--reference",
        type=Path,
        help="Table whose per-key row counts and sums the merge must reproduce",
    )
    merge.add_argument("--template-dir", type=Path, help="Directory with extra templates")

    templates = subparsers.add_parser("templates", help="Inspect header templates")
    templates.add_argument("--template-dir", type=Path, help="Directory with extra templates")
    templates_sub = templates.add_subparsers(dest="templates_command", required=True)
    templates_sub.add_parser("list", help="List available templates")
    templates_show = templates_sub.add_parser("show", help="Print one template as JSON")
    templates_show.add_argument("template_id", type=str, help="Template id")

    return parser.parse_args(list(argv))


def _parse_fuzzy(value: str) -> FuzzyKey:
    name, separator, raw_threshold = value.partition(":")
    name = name.strip()
    if not name:
        raise ValueError(f"Invalid --fuzzy value: {value!r}")
    if not separator:
        return name, None
    try:
        threshold = float(raw_threshold)
    except ValueError as exc:
        raise ValueError(f"Invalid --fuzzy threshold: {value!r}") from exc
    return name, threshold


def _parse_expected_sum(value: str) -> tuple[str, Decimal]:
    name, separator, raw_total = value.partition("=")
    name = name.strip()
    if not name or not separator:
        raise ValueError(f"Invalid --expect-sum value: {value!r}")
    try:
        total = Decimal(raw_total.strip().replace(",", "."))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid --expect-sum total: {value!r}") from exc
    return name, total


def _check_files(paths: Sequence[Path]) -> None:
    for path in paths:
        if not path.is_file():
            raise ValueError(f"No such file: {path}")
        if not is_table_file(path):
            raise ValueError(f"Not a CSV or Excel file: {path}")


def _merge_settings(args: argparse.Namespace) -> MergeSettings:
    _check_files(args.files)
    if args.reference is not None:
        _check_files([args.reference])
    if args.output is not None and not is_table_file(args.output):
        raise ValueError(f"Output must be a .csv or .xlsx file: {args.output}")
    if args.report and args.output is None:
        raise ValueError("--report requires --output")
    return build_merge_settings(
        keys=args.key,
        fuzzy=[_parse_fuzzy(value) for value in args.fuzzy],
        policy=ConflictPolicy.parse(args.policy) if args.policy else None,
        similarity_threshold=args.threshold,
        expected_rows=args.expect_rows,
        expected_sums=dict(_parse_expected_sum(value) for value in args.expect_sum),
        settings_file=args.settings,
    )


def _run_merge(args: argparse.Namespace, settings: MergeSettings) -> None:
    outcome = merge_files(
        args.files,
        template_id=args.template,
        settings=settings,
        output=args.output,
        report=args.report,
        header_position=args.header_position,
        reference=args.reference,
        templates=None if args.template_dir is None else load_templates(args.template_dir),
        cancel=_cancel,
    )
    for path in outcome.written:
        log.info("Wrote %s", path)
    print(outcome.result.summary())  # noqa: T201


def _run_templates(args: argparse.Namespace) -> None:
    if args.templates_command == "list":
        for template in list_templates(args.template_dir):
            line = f"{template.template_id}\t{len(template.fields)} fields"
            if template.description:
                line += f"\t{template.description}"
            print(line)  # noqa: T201
    elif args.templates_command == "show":
        print(show_template(args.template_id, args.template_dir))  # noqa: T201
    else:
        raise ValueError(f"Unsupported templates command: {args.templates_command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    configure_logging()
    parsed_args: argparse.Namespace
    settings: MergeSettings | None = None
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        if parsed_args.verbose:
            configure_logging(level=logging.DEBUG, force=True)
        if parsed_args.command == "merge":
            settings = _merge_settings(parsed_args)
    except (ValueError, ConfigurationError):
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if settings is not None:
            _run_merge(parsed_args, settings)
        elif parsed_args.command == "templates":
            _run_templates(parsed_args)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301

    except MergeCancelledError as exc:
        log.info("%s", exc)
        sys.exit(0)
    except MergeSettingsError:
        log.exception("Merge settings do not fit the template or the files")
        sys.exit(2)
    except Exception:
        log.exception("Fatal error during merge")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C): stop after the current source, exit on the second press."""
    if _cancel.is_set():
        log.info("Closed by user (Ctrl+C)")
        sys.exit(0)
    log.info("Cancelling after the current source (press Ctrl+C again to quit)")
    _cancel.set()


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
