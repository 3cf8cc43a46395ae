"""
Test the HTTP trigger routes.
"""

import pytest
from fastapi.testclient import TestClient

from accountant.api.dependencies import get_accountant_factory, get_backfill_runner_factory
from accountant.api.main import app
from accountant.core.exceptions import NodeUnavailableError
from accountant.ledger.types import CurrentStatus, ReconciliationRecord


class FakeAccountant:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def _record(self, *call):
        self.calls.append(call)
        if self.fail:
            raise NodeUnavailableError("502 Bad Gateway")

    async def process_latest_epoch(self):
        self._record("process_latest_epoch")

    async def backfill_addresses(self, epoch):
        self._record("backfill_addresses", epoch)

    async def reconcile(self, epoch=None):
        self._record("reconcile", epoch)
        return [
            ReconciliationRecord(
                address="0xabc", alias="Me", on_chain_total=501, calculated_total=500,
                on_chain_liquid=501, on_chain_locked=0, difference=1, on_chain_stable=0,
                calculated_stable=0, stable_difference=0, mismatch=True, epoch=epoch or 4,
            ),
        ]

    async def current_status(self):
        self._record("current_status")
        return CurrentStatus(current_revision=1, latest_epoch=5, all_epochs=[5, 4])

    async def create_revision(self):
        self._record("create_revision")
        return 2


class FakeRunner:
    runs = []

    def __init__(self, accountant):
        self.accountant = accountant

    async def run(self, from_epoch, to_epoch):
        FakeRunner.runs.append((from_epoch, to_epoch))


@pytest.fixture
def accountant():
    return FakeAccountant()


@pytest.fixture
def received_addresses():
    return []


@pytest.fixture
def client(accountant, received_addresses):
    async def conjure(addresses=None):
        received_addresses.append(addresses)
        return accountant

    app.dependency_overrides[get_accountant_factory] = lambda: conjure
    app.dependency_overrides[get_backfill_runner_factory] = lambda: FakeRunner
    FakeRunner.runs = []
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_process_latest_epoch_success(client, accountant):
    response = client.post("/process-latest-epoch")

    assert response.status_code == 200
    assert response.text == "✅"
    assert accountant.calls == [("process_latest_epoch",)]


def test_process_latest_epoch_failure(client, accountant):
    accountant.fail = True

    response = client.post("/process-latest-epoch")

    assert response.status_code == 500
    assert response.text == "❌"


def test_backfill_epoch_from_query(client, accountant):
    response = client.post("/backfill-epoch", params={"epoch": "7"})

    assert response.text == "✅"
    assert accountant.calls == [("backfill_addresses", 7)]


def test_backfill_epoch_body_wins_and_carries_addresses(client, accountant, received_addresses):
    addresses = {"delegators": ["0xabc"]}

    response = client.post("/backfill-epoch?epoch=1", json={"epoch": "9", "addresses": addresses})

    assert response.text == "✅"
    assert accountant.calls == [("backfill_addresses", 9)]
    assert received_addresses == [addresses]


def test_backfill_epoch_requires_epoch(client, accountant):
    response = client.post("/backfill-epoch")

    assert response.status_code == 400
    assert accountant.calls == []


@pytest.mark.parametrize("epoch", ["abc", "1.5", "-3"])
def test_epoch_must_be_whole_and_non_negative(client, epoch):
    assert client.post("/backfill-epoch", params={"epoch": epoch}).status_code == 400


def test_initiate_backfill_runs_in_background(client):
    response = client.post("/initiate-backfill", json={"fromEpoch": 3, "toEpoch": "5"})

    assert response.status_code == 200
    assert response.text == "✅"
    assert FakeRunner.runs == [(3, 5)]


def test_initiate_backfill_validates_range(client):
    assert client.post("/initiate-backfill", json={"fromEpoch": 3}).status_code == 400
    assert client.post("/initiate-backfill", json={"fromEpoch": 6, "toEpoch": 5}).status_code == 400
    assert FakeRunner.runs == []


@pytest.mark.parametrize("method", ["get", "post"])
def test_reconcile(client, accountant, method):
    response = getattr(client, method)("/reconcile", params={"epoch": 4})

    assert response.status_code == 200
    assert response.json() == [{
        "address": "0xabc",
        "alias": "Me",
        "onChainTotal": "501",
        "calculatedTotal": "500",
        "onChainLiquid": "501",
        "onChainLocked": "0",
        "difference": "1",
        "onChainStable": "0",
        "calculatedStable": "0",
        "stableDifference": "0",
        "mismatch": True,
        "epoch": 4,
    }]
    assert accountant.calls == [("reconcile", 4)]


def test_reconcile_failure_returns_empty_list(client, accountant):
    accountant.fail = True

    response = client.get("/reconcile")

    assert response.status_code == 200
    assert response.json() == []


def test_current_status(client):
    response = client.get("/current-status")

    assert response.json() == {"currentRevision": 1, "latestEpoch": 5, "allEpochs": [5, 4]}


def test_current_status_failure_default(client, accountant):
    accountant.fail = True

    response = client.get("/current-status")

    assert response.json() == {"currentRevision": 0, "latestEpoch": 0, "allEpochs": [], "error": True}


def test_create_revision(client, accountant):
    assert client.post("/create-revision").json() == 2

    accountant.fail = True
    assert client.post("/create-revision").json() is None


def test_configuration_is_non_secret(client):
    response = client.get("/configuration")

    body = response.json()
    assert body["NETWORK"] in ("mainnet", "baklava")
    assert "DATABASE_HOST" in body
    assert not any("password" in str(value) for value in body.values())


def test_health_reports_unavailable_database(client):
    response = client.get("/health")

    assert response.status_code == 503
    assert response.json()["services"]["database"] == "unhealthy"
