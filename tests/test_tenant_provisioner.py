from __future__ import annotations

import itertools
from typing import Any, Callable

import pytest
from google.api_core.exceptions import Aborted

from zonemap.common.errors import CallerFacingError, InvalidIdentity, MissingTenantScope, ProvisioningFailed
from zonemap.tenancy import provisioner as provisioner_mod
from zonemap.tenancy.provisioner import IdentityCandidate, TenantProvisioner, derive_tenant_name


class _FakeDocRef:
    def __init__(self, path: str):
        self.path = path
        self.id = path.rsplit("/", 1)[-1]


class _FakeCollection:
    def __init__(self, db: "_FakeFirestore", path: str):
        self._db = db
        self._path = path

    def document(self, doc_id: str | None = None) -> _FakeDocRef:
        return _FakeDocRef(f"{self._path}/{doc_id or self._db.next_id()}")


class _FakeTransaction:
    def __init__(self):
        self.writes: list[tuple[_FakeDocRef, dict[str, Any]]] = []

    def set(self, ref: _FakeDocRef, data: dict[str, Any]) -> None:
        self.writes.append((ref, dict(data)))


class _FakeFirestore:
    """
    Transaction semantics: buffered writes, applied only when the attempt commits.
    `aborts` injects contention retries; `commit_error` fails every commit.
    """

    def __init__(self, *, aborts: int = 0, commit_error: Exception | None = None):
        self.store: dict[str, dict[str, Any]] = {}
        self.attempts = 0
        self._aborts = aborts
        self._commit_error = commit_error
        self._ids = itertools.count(1)

    def next_id(self) -> str:
        return f"auto{next(self._ids):03d}"

    def collection(self, path: str) -> _FakeCollection:
        return _FakeCollection(self, path)

    def run_transaction(self, db: Any, fn: Callable[[Any], Any], *, max_attempts: int = 5) -> Any:
        assert db is self
        for _ in range(max_attempts):
            self.attempts += 1
            txn = _FakeTransaction()
            result = fn(txn)
            if self._aborts > 0:
                self._aborts -= 1
                continue
            if self._commit_error is not None:
                raise self._commit_error
            for ref, data in txn.writes:
                self.store[ref.path] = data
            return result
        raise Aborted("too much contention")


@pytest.fixture
def make_db(monkeypatch):
    def _make(**kwargs: Any) -> _FakeFirestore:
        db = _FakeFirestore(**kwargs)
        monkeypatch.setattr(provisioner_mod, "run_transaction", db.run_transaction)
        return db

    return _make


def _tenants(db: _FakeFirestore) -> dict[str, dict[str, Any]]:
    return {p.split("/", 1)[1]: d for p, d in db.store.items() if p.startswith("tenants/")}


def test_uid_only_identity_gets_fallback_name_and_claim(make_db) -> None:
    db = make_db()

    claims = TenantProvisioner(db).provision(IdentityCandidate(uid="abc123"))

    tenants = _tenants(db)
    assert list(claims) == ["tenantId"]
    assert claims["tenantId"] in tenants
    assert tenants[claims["tenantId"]] == {"name": "User abc123", "ownerId": "abc123", "status": "active"}


def test_fallback_name_uses_first_eight_uid_chars() -> None:
    assert derive_tenant_name(IdentityCandidate(uid="abc1234defgh")) == "User abc1234d"


@pytest.mark.parametrize(
    "candidate,expected",
    [
        (IdentityCandidate(uid="u1", display_name="Ada Lovelace", email="ada@example.com"), "Ada Lovelace"),
        (IdentityCandidate(uid="u1", display_name="  ", email="ada@example.com"), "ada@example.com"),
        (IdentityCandidate(uid="u1", display_name=None, email=None), "User u1"),
    ],
)
def test_tenant_name_preference(candidate: IdentityCandidate, expected: str) -> None:
    assert derive_tenant_name(candidate) == expected


@pytest.mark.parametrize("uid", ["", "   ", None])
def test_missing_uid_is_invalid_identity_and_writes_nothing(make_db, uid: Any) -> None:
    db = make_db()

    with pytest.raises(InvalidIdentity) as exc:
        TenantProvisioner(db).provision(IdentityCandidate(uid=uid))

    assert exc.value.code == "invalid-argument"
    assert db.attempts == 0
    assert db.store == {}


def test_claim_matches_committed_tenant_under_injected_retries(make_db) -> None:
    db = make_db(aborts=2)

    claims = TenantProvisioner(db).provision(IdentityCandidate(uid="owner-1", email="o@example.com"))

    assert db.attempts == 3
    tenants = _tenants(db)
    # Exactly one tenant exists, and it is the one named in the claim.
    assert list(tenants) == [claims["tenantId"]]
    assert tenants[claims["tenantId"]]["ownerId"] == "owner-1"


def test_transaction_failure_is_wrapped_and_leaves_no_tenant(make_db) -> None:
    db = make_db(commit_error=RuntimeError("backend unavailable"))

    with pytest.raises(ProvisioningFailed) as exc:
        TenantProvisioner(db).provision(IdentityCandidate(uid="u1"))

    assert exc.value.code == "internal"
    assert "backend unavailable" in str(exc.value)
    assert isinstance(exc.value.__cause__, RuntimeError)
    assert _tenants(db) == {}


def test_exhausted_contention_is_wrapped(make_db) -> None:
    db = make_db(aborts=10)

    with pytest.raises(ProvisioningFailed):
        TenantProvisioner(db).provision(IdentityCandidate(uid="u1"))

    assert _tenants(db) == {}


def test_caller_facing_error_propagates_unchanged(make_db) -> None:
    original = MissingTenantScope("already caller-facing")
    db = make_db(commit_error=original)

    with pytest.raises(CallerFacingError) as exc:
        TenantProvisioner(db).provision(IdentityCandidate(uid="u1"))

    assert exc.value is original


def test_each_provision_creates_a_distinct_tenant(make_db) -> None:
    db = make_db()
    p = TenantProvisioner(db)

    a = p.provision(IdentityCandidate(uid="u1"))
    b = p.provision(IdentityCandidate(uid="u2"))

    assert a["tenantId"] != b["tenantId"]
    assert {d["ownerId"] for d in _tenants(db).values()} == {"u1", "u2"}
