"""Bucket lifecycle manager tests."""

import json

import pytest

from app.core.errors import ConnectivityError, PolicyError
from app.storage.lifecycle import BucketLifecycleManager, LifecycleState, public_read_policy

from tests.conftest import FakeObjectStore


@pytest.fixture
def empty_store() -> FakeObjectStore:
    return FakeObjectStore()


def make_manager(store) -> BucketLifecycleManager:
    return BucketLifecycleManager(store, "luz-ia", region="us-east-1")


@pytest.mark.unit
def test_public_policy_scoped_to_prefix():
    policy = public_read_policy("luz-ia")
    statement = policy["Statement"][0]

    assert statement["Action"] == ["s3:GetObject"]
    assert statement["Resource"] == ["arn:aws:s3:::luz-ia/public/*"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_full_sequence_creates_bucket_and_policy(empty_store):
    """Test a fresh store ends self-tested with bucket, policy and no leftovers."""
    manager = make_manager(empty_store)

    assert await manager.initialize() is True
    assert manager.state is LifecycleState.SELF_TESTED
    assert manager.bucket_created
    assert "luz-ia" in empty_store.buckets
    assert json.loads(empty_store.policies["luz-ia"]) == public_read_policy("luz-ia")

    # Self-test object written then removed
    assert empty_store.put_calls[0]["key"].startswith("_test_/")
    assert empty_store.removed == [empty_store.put_calls[0]["key"]]
    assert empty_store.objects == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_existing_policy_left_alone(empty_store):
    empty_store.buckets.add("luz-ia")
    empty_store.policies["luz-ia"] = '{"Version": "2012-10-17", "Statement": []}'
    manager = make_manager(empty_store)

    assert await manager.initialize() is True
    assert not manager.policy_applied
    assert empty_store.policies["luz-ia"] == '{"Version": "2012-10-17", "Statement": []}'


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connectivity_failure_halts_without_raising(empty_store):
    empty_store.fail_list_buckets = ConnectivityError("connection refused")
    manager = make_manager(empty_store)

    assert await manager.initialize() is False
    assert manager.state is LifecycleState.UNCHECKED
    assert "connectivity" in manager.errors[0]
    assert empty_store.buckets == set()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_policy_failure_is_only_a_warning(empty_store):
    """Test the self-test still runs when the policy cannot be applied."""
    empty_store.fail_policy = PolicyError("MalformedPolicy")
    manager = make_manager(empty_store)

    assert await manager.initialize() is True
    assert manager.state is LifecycleState.SELF_TESTED
    assert not manager.policy_applied
    assert any(error.startswith("policy:") for error in manager.errors)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_self_test_failure_keeps_prior_progress(empty_store):
    empty_store.put_failure = lambda attempt, size: PermissionError("AccessDenied")
    manager = make_manager(empty_store)

    assert await manager.initialize() is False
    assert manager.state is LifecycleState.POLICY_ATTEMPTED
    assert "luz-ia" in empty_store.buckets
    assert manager.status()["ready"] is False
