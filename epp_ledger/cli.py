"""Operator commands: ledger reconciliation and repair of frozen items."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .core.exceptions import EppLedgerError
from .core.logging import configure_logging, log_extra
from .db.migrate import run_migrations
from .db.session import Base, SessionLocal, engine
from .models import assignment as _assignment  # noqa: F401
from .models import delivery as _delivery  # noqa: F401
from .models import employee as _employee  # noqa: F401
from .models import inventory as _inventory  # noqa: F401
from .models import stock as _stock  # noqa: F401
from .services.ledger import reconcile_site, repair_item

logger = logging.getLogger("epp_ledger.cli")


def _reconcile(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        reports = reconcile_site(db, args.site)
    finally:
        db.close()
    drifting = [report for report in reports if not report.consistent]
    logger.info(
        "reconcile.finished",
        extra=log_extra(site_id=args.site, checked=len(reports), drifting=len(drifting)),
    )
    print(json.dumps([report.as_dict() for report in (reports if args.all else drifting)], indent=2))
    return 1 if drifting else 0


def _repair(args: argparse.Namespace) -> int:
    db = SessionLocal()
    try:
        report = repair_item(db, args.item_id, actor=args.actor)
    except EppLedgerError as exc:
        print(json.dumps(exc.to_dict()), file=sys.stderr)
        return 2
    finally:
        db.close()
    print(json.dumps(report.as_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="epp-ledger", description="EPP stock ledger maintenance")
    parser.add_argument("--log-level", default=None)
    sub = parser.add_subparsers(dest="command", required=True)

    reconcile = sub.add_parser("reconcile", help="verify items against their ledger; drifting items are frozen")
    reconcile.add_argument("--site", default=None, help="limit to one site")
    reconcile.add_argument("--all", action="store_true", help="print consistent items too")
    reconcile.set_defaults(handler=_reconcile)

    repair = sub.add_parser("repair", help="reset an item's stock from its ledger and unfreeze it")
    repair.add_argument("item_id", type=int)
    repair.add_argument("--actor", required=True)
    repair.set_defaults(handler=_repair)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    Base.metadata.create_all(bind=engine)
    run_migrations(engine)
    return args.handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
