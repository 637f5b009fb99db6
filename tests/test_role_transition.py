"""Role transitions: authorization, atomic writes and derived records."""

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from bookinghub.models.models import ActivityLog, AuditLog, BusinessAccount, Profile, RoleGrant, TalentProfile
from bookinghub.services import role_transition
from bookinghub.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    SelfRoleChangeError,
    ValidationError,
)
from bookinghub.services.role_transition import apply_role, change_role


def _grants(db, user_id):
    return sorted(g.role for g in db.query(RoleGrant).filter(RoleGrant.user_id == user_id).all())


def _talent_profile(db, user_id):
    return db.query(TalentProfile).filter(TalentProfile.user_id == user_id).one()


class TestAuthorization:
    def test_self_role_change_is_rejected_without_writes(self, db, admin):
        with pytest.raises(SelfRoleChangeError) as exc:
            change_role(db, admin, admin.user_id, "talent")

        assert exc.value.status_code == 403
        db.expire_all()
        assert _grants(db, admin.user_id) == ["admin"]
        assert db.query(Profile).filter(Profile.user_id == admin.user_id).one().role == "admin"

    def test_staff_cannot_change_roles(self, db, staff, make_user):
        target = make_user("t@example.com", "talent")

        with pytest.raises(AuthorizationError):
            change_role(db, staff, target.user_id, "business")

    def test_invalid_role_is_a_validation_error(self, db, admin, make_user):
        target = make_user("t@example.com", "talent")

        with pytest.raises(ValidationError):
            change_role(db, admin, target.user_id, "owner")

    def test_missing_target(self, db, admin):
        import uuid

        with pytest.raises(NotFoundError):
            change_role(db, admin, uuid.uuid4(), "staff")


class TestTransitions:
    def test_talent_to_staff_and_back_reuses_talent_profile(self, db, admin, make_user):
        target = make_user("maya@example.com", "talent", "Maya", "Reyes")
        original = _talent_profile(db, target.user_id)
        original_id = original.id

        change_role(db, admin, target.user_id, "staff")
        db.expire_all()
        tp = _talent_profile(db, target.user_id)
        assert tp.id == original_id
        assert tp.active is False
        assert tp.public_visibility is False
        assert _grants(db, target.user_id) == ["staff"]

        result = change_role(db, admin, target.user_id, "talent")
        db.expire_all()
        tp = _talent_profile(db, target.user_id)
        assert result.changed
        assert tp.id == original_id
        assert tp.active is True
        assert tp.public_visibility is True
        assert db.query(TalentProfile).filter(TalentProfile.user_id == target.user_id).count() == 1

    def test_becoming_talent_provisions_a_talent_profile(self, db, admin, make_user):
        target = make_user("sam@example.com", "staff", "Sam", "Staffer")
        assert db.query(TalentProfile).filter(TalentProfile.user_id == target.user_id).count() == 0

        change_role(db, admin, target.user_id, "talent")

        tp = _talent_profile(db, target.user_id)
        assert tp.name == "Sam Staffer"
        assert tp.slug == "sam-staffer"

    def test_becoming_business_creates_one_business_account(self, db, admin, make_user):
        target = make_user("biz@example.com", "talent")

        change_role(db, admin, target.user_id, "business")
        change_role(db, admin, target.user_id, "staff")
        change_role(db, admin, target.user_id, "business")

        assert db.query(BusinessAccount).filter(BusinessAccount.user_id == target.user_id).count() == 1
        assert _grants(db, target.user_id) == ["business"]

    def test_same_role_is_a_no_op(self, db, admin, make_user):
        target = make_user("t@example.com", "talent")
        version = target.version

        result = change_role(db, admin, target.user_id, "talent")

        assert result.changed is False
        assert result.version == version
        assert db.query(ActivityLog).count() == 0

    def test_change_is_logged_and_audited(self, db, admin, make_user):
        target = make_user("t@example.com", "talent")

        result = change_role(db, admin, target.user_id, "staff")

        assert result.warnings == []
        activity = db.query(ActivityLog).filter(ActivityLog.user_id == target.user_id).one()
        assert activity.action == "role_changed"
        assert activity.admin_user_id == admin.user_id
        assert activity.details["old_role"] == "talent"
        audit = db.query(AuditLog).filter(AuditLog.entity_id == target.user_id).one()
        assert audit.action == "ROLE_CHANGE"
        assert audit.changes_json == {"role": {"before": "talent", "after": "staff"}}

    def test_direct_promotion_hides_the_talent_profile(self, db, make_user):
        # Bootstrap path: no acting admin exists yet
        target = make_user("t@example.com", "talent", "Tia", "Moss")

        apply_role(db, target, "admin")
        db.commit()

        assert target.role == "admin"
        assert _grants(db, target.user_id) == ["admin"]
        tp = _talent_profile(db, target.user_id)
        assert tp.active is False
        assert tp.public_visibility is False
        assert db.query(ActivityLog).count() == 0


class TestFailures:
    def test_expected_version_mismatch_is_a_conflict(self, db, admin, make_user):
        target = make_user("t@example.com", "talent")

        with pytest.raises(ConflictError):
            change_role(db, admin, target.user_id, "staff", expected_version=target.version + 5)

        db.expire_all()
        assert _grants(db, target.user_id) == ["talent"]

    def test_concurrent_update_is_a_conflict_and_rolls_back(self, db, admin, make_user):
        target = make_user("t@example.com", "talent")
        target_id = target.user_id
        # Another writer bumps the version behind the session's back
        db.execute(text("UPDATE profiles SET version = version + 1"))

        with pytest.raises(ConflictError):
            change_role(db, admin, target_id, "staff")

        db.expire_all()
        assert _grants(db, target_id) == ["talent"]
        assert _talent_profile(db, target_id).active is True

    def test_log_failures_are_warnings(self, db, admin, make_user, monkeypatch):
        target = make_user("t@example.com", "talent")

        def broken(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("log table locked"))

        monkeypatch.setattr(role_transition, "log_activity", broken)
        monkeypatch.setattr(role_transition, "log_security_event", broken)

        result = change_role(db, admin, target.user_id, "staff")

        assert result.changed
        assert result.warnings == ["activity_log_failed", "audit_log_failed"]
        db.expire_all()
        assert db.query(Profile).filter(Profile.user_id == target.user_id).one().role == "staff"
