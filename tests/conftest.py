"""Shared fixtures wiring the in-memory boto3 fakes into the reconciler."""

from typing import List

import pytest

from cf_reconcile.cloud import BlobStore, CloudFormationApi
from cf_reconcile.component import StackComponent
from cf_reconcile.state import FileStateStore
from tests.fakes import FakeCloudFormationClient, FakeS3Client


@pytest.fixture
def cfn_client() -> FakeCloudFormationClient:
    return FakeCloudFormationClient()


@pytest.fixture
def s3_client(cfn_client) -> FakeS3Client:
    client = FakeS3Client()
    cfn_client.s3 = client
    return client


@pytest.fixture
def api(cfn_client) -> CloudFormationApi:
    return CloudFormationApi(cfn_client)


@pytest.fixture
def blob_store(s3_client) -> BlobStore:
    return BlobStore(s3_client)


@pytest.fixture
def regions_used() -> List[str]:
    return []


@pytest.fixture
def clients(api, blob_store, regions_used):
    def factory(region):
        regions_used.append(region)
        return api, blob_store

    return factory


@pytest.fixture
def state_store(tmp_path) -> FileStateStore:
    return FileStateStore(tmp_path / "state")


@pytest.fixture
def make_component(state_store, clients):
    def factory(component_id="website"):
        return StackComponent(component_id, state_store=state_store, clients=clients, interval=0)

    return factory
