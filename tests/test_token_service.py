"""
Unit tests for token management operations.
"""

import pytest

from compound_access.core.actor import ActorContext
from compound_access.core.errors import NotFound, ScopeViolation
from compound_access.models.audit_log import AuditLog
from compound_access.services.token_service import list_visitor_tokens, resolve_owner_tokens, revoke_token
from compound_access.services.validation_engine import submit_scan
from conftest import make_token, set_payment


class TestRevokeToken:
    def test_owner_revokes_own_token(self, db, world):
        token, secret = make_token(db, world)

        assert revoke_token(db, token_id=token.id, actor=world.actor(world.owner)) is True

        db.refresh(token)
        assert token.active is False
        assert token.revoked_by_user_id == world.owner.id
        assert token.revoked_at is not None
        assert submit_scan(db, presented_code=secret, scanner=world.actor(world.guard)).denial_reason == "INACTIVE"
        assert db.query(AuditLog).filter(AuditLog.action_type == "ACCESS_TOKEN_REVOKE").count() == 1

    def test_second_revoke_reports_false(self, db, world):
        token, _ = make_token(db, world)
        revoke_token(db, token_id=token.id, actor=world.actor(world.owner))

        assert revoke_token(db, token_id=token.id, actor=world.actor(world.owner)) is False
        assert db.query(AuditLog).filter(AuditLog.action_type == "ACCESS_TOKEN_REVOKE").count() == 1

    def test_management_revokes_any_token_in_compound(self, db, world):
        token, _ = make_token(db, world)
        assert revoke_token(db, token_id=token.id, actor=world.actor(world.manager)) is True

    def test_other_owner_is_refused(self, db, world):
        token, _ = make_token(db, world)
        with pytest.raises(ScopeViolation):
            revoke_token(db, token_id=token.id, actor=world.actor(world.neighbour))

    def test_admin_of_other_compound_is_refused(self, db, world):
        token, _ = make_token(db, world)
        outsider = ActorContext(user_id=world.outsider_guard.id, compound_id=world.other_compound.id, role="management")
        with pytest.raises(ScopeViolation):
            revoke_token(db, token_id=token.id, actor=outsider)

    def test_super_admin_crosses_compounds(self, db, world):
        token, _ = make_token(db, world)
        root = ActorContext(user_id=world.outsider_guard.id, compound_id=world.other_compound.id, role="super_admin")
        assert revoke_token(db, token_id=token.id, actor=root) is True

    def test_unknown_token(self, db, world):
        with pytest.raises(NotFound):
            revoke_token(db, token_id="missing", actor=world.actor(world.manager))


class TestResolveOwnerTokens:
    def test_only_paid_scopes_are_issued(self, db, world):
        set_payment(db, world, "Annual Maintenance", "paid")
        set_payment(db, world, "Beach Access", "paid")
        set_payment(db, world, "Pool Access", "due")

        views = resolve_owner_tokens(db, actor=world.actor(world.owner))

        assert sorted(v.access_type for v in views) == ["Beach Access", "Gate Access"]
        assert {v.unit_number for v in views} == {"A-101"}

    def test_repeated_calls_return_same_codes(self, db, world):
        set_payment(db, world, "Annual Maintenance", "paid")

        first = resolve_owner_tokens(db, actor=world.actor(world.owner))
        second = resolve_owner_tokens(db, actor=world.actor(world.owner))

        assert [(v.token_id, v.opaque_code) for v in first] == [(v.token_id, v.opaque_code) for v in second]

    def test_issued_code_scans(self, db, world):
        set_payment(db, world, "Annual Maintenance", "paid")
        view = resolve_owner_tokens(db, actor=world.actor(world.owner))[0]

        outcome = submit_scan(db, presented_code=view.opaque_code, scanner=world.actor(world.guard))

        assert outcome.granted is True

    def test_no_active_season(self, db, world):
        set_payment(db, world, "Annual Maintenance", "paid")
        world.season.is_active = False
        db.commit()

        assert resolve_owner_tokens(db, actor=world.actor(world.owner)) == []


class TestListVisitorTokens:
    def test_lists_own_passes_with_scan_counts(self, db, world):
        token, secret = make_token(db, world, visitor_name="Sara")
        make_token(db, world, owner_user_id=world.neighbour.id, unit_id=world.other_unit.id)
        submit_scan(db, presented_code=secret, scanner=world.actor(world.guard))

        rows = list_visitor_tokens(db, actor=world.actor(world.owner))

        assert len(rows) == 1
        row = rows[0]
        assert row["id"] == token.id
        assert row["scan_count"] == 1
        assert row["last_scanned_at"] is not None
        assert row["unit_number"] == "A-101"

    def test_status_filter(self, db, world):
        used, secret = make_token(db, world)
        fresh, _ = make_token(db, world)
        submit_scan(db, presented_code=secret, scanner=world.actor(world.guard))

        active = list_visitor_tokens(db, actor=world.actor(world.owner), status="active")
        expired = list_visitor_tokens(db, actor=world.actor(world.owner), status="expired")

        assert [r["id"] for r in active] == [fresh.id]
        assert [r["id"] for r in expired] == [used.id]
