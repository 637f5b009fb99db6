"""Records derived when an identity or profile is flushed."""

from bookinghub.auth.provider import AuthProvider
from bookinghub.config import settings
from bookinghub.models.models import BusinessAccount, Profile, RoleGrant, TalentProfile, User


def _signup(db, email, **meta):
    return AuthProvider(db).sign_up(email, "password123", metadata=meta)


class TestIdentityProvisioning:
    def test_signup_creates_profile_grant_and_talent_profile(self, db):
        user = _signup(db, "maya@example.com", first_name="Maya", last_name="Reyes")

        profile = db.query(Profile).filter(Profile.user_id == user.id).one()
        assert profile.role == "talent"
        assert profile.active is True
        assert profile.full_name == "Maya Reyes"
        assert [g.role for g in db.query(RoleGrant).filter(RoleGrant.user_id == user.id)] == ["talent"]
        tp = db.query(TalentProfile).filter(TalentProfile.user_id == user.id).one()
        assert tp.active is True
        assert tp.public_visibility is False

    def test_self_signup_needs_confirmation(self, db):
        user = _signup(db, "maya@example.com")

        assert user.email_confirmed_at is None
        assert user.confirmation_token

    def test_admin_created_identity_is_confirmed(self, db):
        user = _signup(db, "staff@example.com", role="staff", created_by_admin=True)

        assert user.email_confirmed_at is not None
        assert user.confirmation_token is None
        assert db.query(TalentProfile).filter(TalentProfile.user_id == user.id).count() == 0

    def test_unknown_role_falls_back_to_default(self, db):
        user = _signup(db, "x@example.com", role="overlord")

        assert db.query(Profile).filter(Profile.user_id == user.id).one().role == "talent"

    def test_talent_slugs_stay_unique(self, db):
        a = _signup(db, "a@example.com", first_name="Maya", last_name="Reyes")
        b = _signup(db, "b@example.com", first_name="Maya", last_name="Reyes")

        slugs = {
            tp.user_id: tp.slug
            for tp in db.query(TalentProfile).filter(TalentProfile.user_id.in_([a.id, b.id]))
        }
        assert slugs[a.id] == "maya-reyes"
        assert slugs[b.id] == "maya-reyes-2"

    def test_email_is_normalized(self, db):
        _signup(db, "  Maya@Example.COM ")

        assert db.query(User).filter(User.email == "maya@example.com").count() == 1

    def test_business_signup_gets_a_business_account(self, db, monkeypatch):
        monkeypatch.setattr(settings, "default_signup_role", "business")

        user = _signup(db, "acme@example.com", first_name="Acme", last_name="Events")

        assert db.query(Profile).filter(Profile.user_id == user.id).one().role == "business"
        account = db.query(BusinessAccount).filter(BusinessAccount.user_id == user.id).one()
        assert account.name == "Acme Events"
        assert account.contact_email == "acme@example.com"
        assert db.query(TalentProfile).filter(TalentProfile.user_id == user.id).count() == 0

    def test_role_change_to_business_adds_the_account_once(self, db):
        user = _signup(db, "maya@example.com", first_name="Maya", last_name="Reyes")
        profile = db.query(Profile).filter(Profile.user_id == user.id).one()

        profile.role = "business"
        db.commit()
        profile.first_name = "May"
        db.commit()

        assert db.query(BusinessAccount).filter(BusinessAccount.user_id == user.id).count() == 1
