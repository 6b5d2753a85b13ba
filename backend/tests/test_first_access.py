from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError

from segheria.auth import decode_token
from segheria.domain_errors import DomainError
from segheria.models import AuditEvent, User
from segheria.use_cases import first_access
from segheria.use_cases.first_access import (
    create_user_use_case,
    delete_user_use_case,
    finalize_password_use_case,
    manual_reset_password_use_case,
    reset_user_otp_use_case,
    sign_in_with_password_use_case,
    update_user_use_case,
    verify_first_access_use_case,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class _QueryStub:
    def __init__(self, *, first_result=None, error=None):
        self._first_result = first_result
        self._error = error

    def filter(self, *_args, **_kwargs):
        return self

    def first(self):
        if self._error is not None:
            raise self._error
        return self._first_result


class _SessionStub:
    def __init__(self, *, user=None, query_error=None, fail_commit=False):
        self._user = user
        self._query_error = query_error
        self._fail_commit = fail_commit
        self.added = []
        self.deleted = []
        self.commit_calls = 0
        self.rollback_calls = 0

    def query(self, model):
        if model is User:
            return _QueryStub(first_result=self._user, error=self._query_error)
        raise AssertionError(f"Unexpected query model: {model}")

    def add(self, obj):
        self.added.append(obj)

    def delete(self, obj):
        self.deleted.append(obj)

    def commit(self):
        if self._fail_commit:
            raise SQLAlchemyError("commit rejected")
        self.commit_calls += 1

    def rollback(self):
        self.rollback_calls += 1


@pytest.fixture(autouse=True)
def _fast_hashing(monkeypatch):
    monkeypatch.setattr(first_access, "hash_password", lambda secret: f"hashed:{secret}")
    monkeypatch.setattr(first_access, "verify_password", lambda plain, hashed: hashed == f"hashed:{plain}")


def _admin():
    return SimpleNamespace(id=uuid4(), email="admin@segheria.local", role="admin")


def _user(
    *,
    registration_status="pending",
    otp="A1B2C3",
    otp_expires_at=NOW + timedelta(hours=1),
    email_confirmed=True,
    token_version=0,
):
    return SimpleNamespace(
        id=uuid4(),
        email="mario@segheria.local",
        name="Mario",
        role="collaboratore",
        password_hash=f"hashed:{otp}",
        password_changed_at=None,
        registration_status=registration_status,
        otp=otp,
        otp_expires_at=otp_expires_at,
        email_confirmed=email_confirmed,
        token_version=token_version,
        is_active=True,
    )


def _audit_actions(db: _SessionStub) -> list[str]:
    return [item.action for item in db.added if isinstance(item, AuditEvent)]


def test_create_user_is_pending_with_code_as_credential() -> None:
    db = _SessionStub(user=None)

    user, otp = create_user_use_case(
        db=db,
        name=" Mario ",
        email=" Mario@Segheria.local ",
        role="operatore",
        current_user=_admin(),
        at=NOW,
    )

    assert user.email == "mario@segheria.local"
    assert user.name == "Mario"
    assert user.registration_status == "pending"
    assert user.otp == otp
    assert user.password_hash == f"hashed:{otp}"
    assert user.otp_expires_at == NOW + timedelta(hours=24)
    assert user in db.added
    assert _audit_actions(db) == ["user_created"]
    assert db.commit_calls == 1


def test_create_user_rejects_duplicate_email() -> None:
    db = _SessionStub(user=_user())

    with pytest.raises(DomainError) as exc:
        create_user_use_case(db=db, name="Mario", email="mario@segheria.local", role="operatore", current_user=_admin())

    assert exc.value.code == "USER_ALREADY_EXISTS"
    assert db.commit_calls == 0


def test_create_user_rejects_unknown_role() -> None:
    with pytest.raises(DomainError) as exc:
        create_user_use_case(db=_SessionStub(), name="Mario", email="m@x.it", role="director", current_user=_admin())

    assert exc.value.code == "INVALID_ROLE"


def test_create_user_reports_rejected_write() -> None:
    db = _SessionStub(user=None, fail_commit=True)

    with pytest.raises(DomainError) as exc:
        create_user_use_case(db=db, name="Mario", email="m@x.it", role="operatore", current_user=_admin())

    assert exc.value.code == "USER_CREATE_FAILED"
    assert exc.value.http_status == 500
    assert db.rollback_calls == 1


def test_sign_in_rejects_wrong_password_with_generic_message() -> None:
    db = _SessionStub(user=_user())

    with pytest.raises(DomainError) as exc:
        sign_in_with_password_use_case(db=db, email="mario@segheria.local", password="nope")

    assert exc.value.code == "INVALID_CREDENTIALS"
    assert exc.value.message == "Email o password non corretta"


def test_sign_in_rejects_unconfirmed_email() -> None:
    db = _SessionStub(user=_user(email_confirmed=False))

    with pytest.raises(DomainError) as exc:
        sign_in_with_password_use_case(db=db, email="mario@segheria.local", password="A1B2C3")

    assert exc.value.code == "EMAIL_NOT_CONFIRMED"


def test_sign_in_wraps_store_failure() -> None:
    db = _SessionStub(query_error=SQLAlchemyError("connection lost"))

    with pytest.raises(DomainError) as exc:
        sign_in_with_password_use_case(db=db, email="mario@segheria.local", password="x")

    assert exc.value.code == "SIGN_IN_FAILED"
    assert exc.value.message.startswith("Errore: ")


def test_first_access_accepts_valid_code_in_any_case() -> None:
    user = _user()
    db = _SessionStub(user=user)

    signed_in, token = verify_first_access_use_case(db=db, email=user.email, otp=" a1b2c3 ", at=NOW)

    assert signed_in is user
    payload = decode_token(token)
    assert payload["sub"] == str(user.id)
    assert payload["ver"] == 0


def test_first_access_rejects_wrong_code() -> None:
    user = _user()

    with pytest.raises(DomainError) as exc:
        verify_first_access_use_case(db=_SessionStub(user=user), email=user.email, otp="FFFFFF", at=NOW)

    assert exc.value.code == "OTP_INVALID"
    assert exc.value.message == "Codice OTP non valido o scaduto"


def test_expired_code_signs_the_user_back_out() -> None:
    user = _user(otp_expires_at=NOW - timedelta(minutes=1))
    db = _SessionStub(user=user)

    with pytest.raises(DomainError) as exc:
        verify_first_access_use_case(db=db, email=user.email, otp="A1B2C3", at=NOW)

    assert exc.value.code == "OTP_EXPIRED"
    assert exc.value.message == "Codice OTP non valido o scaduto"
    assert user.token_version == 1
    assert _audit_actions(db) == ["user_logout"]


def test_first_access_after_activation_is_refused() -> None:
    user = _user(registration_status="active")
    db = _SessionStub(user=user)

    with pytest.raises(DomainError) as exc:
        verify_first_access_use_case(db=db, email=user.email, otp="A1B2C3", at=NOW)

    assert exc.value.code == "FIRST_ACCESS_COMPLETED"
    assert exc.value.http_status == 409
    assert user.token_version == 1


def test_finalize_password_activates_account_and_revokes_old_sessions() -> None:
    user = _user(token_version=2)
    db = _SessionStub(user=user)

    token = finalize_password_use_case(db=db, user=user, password="Segheria1", confirm_password="Segheria1")

    assert user.registration_status == "active"
    assert user.password_hash == "hashed:Segheria1"
    assert user.otp is None and user.otp_expires_at is None
    assert user.token_version == 3
    assert decode_token(token)["ver"] == 3
    assert _audit_actions(db) == ["first_access_completed"]


def test_finalize_password_enforces_policy() -> None:
    user = _user()
    db = _SessionStub(user=user)

    with pytest.raises(DomainError) as exc:
        finalize_password_use_case(db=db, user=user, password="segheria1", confirm_password="segheria1")

    assert exc.value.code == "PASSWORD_POLICY"
    assert user.registration_status == "pending"
    assert db.commit_calls == 0


def test_reset_otp_returns_active_user_to_pending() -> None:
    user = _user(registration_status="active", otp=None, otp_expires_at=None, token_version=4)
    db = _SessionStub(user=user)

    reset, otp = reset_user_otp_use_case(db=db, user_id=user.id, current_user=_admin(), at=NOW)

    assert reset is user
    assert user.registration_status == "pending"
    assert user.otp == otp
    assert user.otp_expires_at == NOW + timedelta(hours=24)
    assert user.token_version == 5


def test_reset_otp_of_unknown_user_is_not_found() -> None:
    with pytest.raises(DomainError) as exc:
        reset_user_otp_use_case(db=_SessionStub(user=None), user_id=uuid4(), current_user=_admin())

    assert exc.value.code == "USER_NOT_FOUND"


def test_manual_reset_skips_policy_but_activates_account() -> None:
    user = _user()
    db = _SessionStub(user=user)

    manual_reset_password_use_case(db=db, email=user.email, new_password="semplice", current_user=_admin())

    assert user.password_hash == "hashed:semplice"
    assert user.registration_status == "active"
    assert user.otp is None


def test_manual_reset_requires_a_password() -> None:
    with pytest.raises(DomainError) as exc:
        manual_reset_password_use_case(db=_SessionStub(user=_user()), email="mario@segheria.local", new_password="")

    assert exc.value.code == "USER_FIELDS_REQUIRED"


def test_update_user_changes_role_and_audits_diff() -> None:
    user = _user()
    db = _SessionStub(user=user)

    update_user_use_case(db=db, user_id=user.id, name=None, role="operatore", current_user=_admin())

    assert user.role == "operatore"
    audit = [item for item in db.added if isinstance(item, AuditEvent)][0]
    assert audit.details == {"role": {"old": "collaboratore", "new": "operatore"}}


def test_admin_cannot_delete_self() -> None:
    admin = _admin()
    db = _SessionStub(user=SimpleNamespace(id=admin.id, email=admin.email))

    with pytest.raises(DomainError) as exc:
        delete_user_use_case(db=db, user_id=admin.id, current_user=admin)

    assert exc.value.code == "CANNOT_DELETE_SELF"
    assert db.deleted == []
