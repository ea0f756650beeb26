"""
Unit tests for the scan ledger.
"""

from datetime import timedelta

from compound_access.core.timeutil import as_utc, utcnow
from compound_access.models.scan_attempt import ScanAttempt
from compound_access.services.scan_ledger import ScanHistoryFilter, list_scan_history, purge_before, record_attempt
from conftest import make_token


def _seed(db, world, count=5):
    base = utcnow() - timedelta(hours=count)
    rows = []
    for i in range(count):
        rows.append(
            record_attempt(
                db,
                token_id=None,
                scanner_user_id=world.guard.id,
                compound_id=world.compound.id,
                outcome="granted" if i % 2 == 0 else "denied",
                denial_reason=None if i % 2 == 0 else "EXPIRED",
                scanned_at=base + timedelta(hours=i),
            )
        )
    return rows


class TestListScanHistory:
    def test_newest_first_with_pagination(self, db, world):
        rows = _seed(db, world, count=5)

        first = list_scan_history(db, ScanHistoryFilter(compound_id=world.compound.id), page=1, page_size=2)
        last = list_scan_history(db, ScanHistoryFilter(compound_id=world.compound.id), page=3, page_size=2)

        assert first.total == 5
        assert first.pages == 3
        assert [a.id for a in first.items] == [rows[4].id, rows[3].id]
        assert [a.id for a in last.items] == [rows[0].id]

    def test_filters_by_outcome_and_window(self, db, world):
        rows = _seed(db, world, count=5)

        denied = list_scan_history(db, ScanHistoryFilter(compound_id=world.compound.id, outcome="denied"))
        assert denied.total == 2

        window = ScanHistoryFilter(
            compound_id=world.compound.id,
            date_from=as_utc(rows[1].scanned_at),
            date_to=as_utc(rows[3].scanned_at),
        )
        assert list_scan_history(db, window).total == 3

    def test_compound_isolation(self, db, world):
        _seed(db, world, count=2)
        record_attempt(db, token_id=None, scanner_user_id=world.outsider_guard.id, compound_id=world.other_compound.id, outcome="denied", denial_reason="NOT_FOUND")

        assert list_scan_history(db, ScanHistoryFilter(compound_id=world.compound.id)).total == 2
        assert list_scan_history(db, ScanHistoryFilter(compound_id=world.other_compound.id)).total == 1

    def test_filter_by_token_owner(self, db, world):
        mine, _ = make_token(db, world)
        theirs, _ = make_token(db, world, owner_user_id=world.neighbour.id, unit_id=world.other_unit.id)
        for token in (mine, mine, theirs):
            record_attempt(db, token_id=token.id, scanner_user_id=world.guard.id, compound_id=world.compound.id, outcome="granted")

        page = list_scan_history(db, ScanHistoryFilter(compound_id=world.compound.id, token_owner_id=world.owner.id))

        assert page.total == 2
        assert {a.token_id for a in page.items} == {mine.id}

    def test_page_size_is_clamped(self, db, world):
        page = list_scan_history(db, ScanHistoryFilter(compound_id=world.compound.id), page=0, page_size=10_000)
        assert page.page == 1
        assert page.page_size == 200
        assert page.pages == 0


class TestPurge:
    def test_purge_before_cutoff(self, db, world):
        rows = _seed(db, world, count=4)

        removed = purge_before(db, as_utc(rows[2].scanned_at))

        assert removed == 2
        assert db.query(ScanAttempt).count() == 2
