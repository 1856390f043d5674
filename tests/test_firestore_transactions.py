from __future__ import annotations

from unittest import mock

import pytest
from google.api_core.exceptions import Aborted
from google.auth.credentials import AnonymousCredentials
from google.cloud import firestore

from zonemap.common.errors import ProvisioningFailed
from zonemap.persistence.transactions import run_transaction
from zonemap.tenancy.provisioner import IdentityCandidate, TenantProvisioner


def _client(*commit_outcomes: object) -> tuple[firestore.Client, mock.Mock]:
    """
    A real client whose RPC layer is a mock: begin/rollback succeed, commit
    follows `commit_outcomes` (exceptions are raised, anything else returned).
    """
    api = mock.Mock()
    api.begin_transaction.return_value = mock.Mock(transaction=b"txn-1")
    api.commit.side_effect = list(commit_outcomes)

    client = firestore.Client(project="zonemap-test", credentials=AnonymousCredentials())
    client._firestore_api_internal = api
    return client, api


def _committed(write_results: int = 1) -> mock.Mock:
    return mock.Mock(write_results=[mock.Mock()] * write_results)


def _written_doc_ids(api: mock.Mock) -> list[str]:
    ids: list[str] = []
    for call in api.commit.call_args_list:
        (write,) = call.kwargs["request"]["writes"]
        ids.append(write.update.name.rsplit("/", 1)[-1])
    return ids


def test_attempt_is_rerun_after_aborted_commit() -> None:
    client, api = _client(Aborted("contention"), _committed())
    attempts: list[int] = []

    def _fn(transaction) -> str:
        attempts.append(len(attempts) + 1)
        ref = client.collection("counters").document("c1")
        transaction.set(ref, {"n": len(attempts)})
        return f"attempt-{len(attempts)}"

    assert run_transaction(client, _fn) == "attempt-2"
    assert attempts == [1, 2]
    assert api.commit.call_count == 2


def test_tenant_claim_matches_the_attempt_that_committed() -> None:
    client, api = _client(Aborted("contention"), _committed())

    claims = TenantProvisioner(client).provision(IdentityCandidate(uid="u1", email="ada@example.com"))

    first_id, last_id = _written_doc_ids(api)
    assert api.commit.call_count == 2
    assert first_id != last_id
    assert claims == {"tenantId": last_id}


def test_exhausted_contention_surfaces_as_provisioning_failure() -> None:
    client, api = _client(*[Aborted("contention")] * 5)

    with pytest.raises(ProvisioningFailed):
        TenantProvisioner(client).provision(IdentityCandidate(uid="u1"))

    assert api.commit.call_count == 5
