from __future__ import annotations

import argparse

from compound_access.core.config import get_settings
from compound_access.core.logging import configure_logging
from compound_access.db.session import SessionLocal
from compound_access.services.lifecycle_reaper import JOBS, run_all
from compound_access.services.notification_dispatcher import NotificationDispatcher
from compound_access.services.push_transport import build_transport


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run periodic access-token lifecycle jobs")
    parser.add_argument("--job", action="append", choices=JOBS, help="Job to run (repeatable). Default: all")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    jobs = tuple(args.job) if args.job else JOBS
    notifier = NotificationDispatcher(SessionLocal, build_transport(), max_workers=1)

    db = SessionLocal()
    try:
        report = run_all(db, notifier=notifier, jobs=jobs)
    finally:
        db.close()
        notifier.shutdown(wait=True)

    print(
        f"tokens_expired={report.tokens_expired} "
        f"seasons_closed={report.seasons_closed} "
        f"owner_tokens_deactivated={report.owner_tokens_deactivated} "
        f"ledger_purged={report.ledger_rows_purged} "
        f"payments_overdue={report.payments_marked_overdue} "
        f"payment_reminders={report.payment_reminders_sent} "
        f"season_notices={report.season_notices_sent} "
        f"device_tokens_removed={report.device_tokens_removed}"
    )
    for err in report.errors:
        print(f"error: {err}")
    return 1 if report.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
