#!/usr/bin/env python3
"""Ledger and booking integrity checks for the tool lending database."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from tool_lending.db.session import create_lending_engine, create_session_factory
from tool_lending.models.lending_models import Rental
from tool_lending.services.ledger_service import find_debt_mismatches
from tool_lending.services.rental_rules import intervals_overlap


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _run_debt_checks(db: Session) -> list[CheckResult]:
    results = []
    for row in find_debt_mismatches(db):
        results.append(
            CheckResult(
                name=f"member {row['memberID']} ({row['fullName']})",
                ok=False,
                detail=f"TotalDebt={row['totalDebt']} ledger={row['expectedDebt']} diff={row['difference']}",
            )
        )
    return results


def _run_overlap_checks(db: Session) -> list[CheckResult]:
    rentals = db.execute(
        select(Rental)
        .where(Rental.Status.in_(["pending", "active"]))
        .order_by(Rental.ToolID, Rental.StartDate)
    ).scalars().all()
    results = []
    for index, first in enumerate(rentals):
        for second in rentals[index + 1:]:
            if second.ToolID != first.ToolID:
                break
            if intervals_overlap(first.StartDate, first.EndDate, second.StartDate, second.EndDate):
                results.append(
                    CheckResult(
                        name=f"tool {first.ToolID}",
                        ok=False,
                        detail=(
                            f"{first.RentalNumber} {first.StartDate}..{first.EndDate} overlaps "
                            f"{second.RentalNumber} {second.StartDate}..{second.EndDate}"
                        ),
                    )
                )
    return results


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    rows = list(rows)
    if not rows:
        print("[OK] no findings")
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Tool lending debt and booking audit")
    parser.add_argument("--db-url", default=os.environ.get("TOOL_LENDING_DB_URL", ""))
    args = parser.parse_args(argv)

    if not args.db_url:
        print("TOOL_LENDING_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = create_lending_engine(args.db_url)
        session_factory = create_session_factory(engine)
        with session_factory() as db:
            debt_results = _run_debt_checks(db)
            overlap_results = _run_overlap_checks(db)
        engine.dispose()
    except Exception as exc:
        print(f"Could not read DB: {exc}")
        return 3

    _print_results("Member Debt vs Ledger", debt_results)
    _print_results("Overlapping Bookings", overlap_results)
    return 1 if debt_results or overlap_results else 0


if __name__ == "__main__":
    sys.exit(main())
