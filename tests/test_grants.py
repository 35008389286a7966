"""Grant engine tests for scoping, idempotence and widening."""

from __future__ import annotations

import pytest

from core.errors import ConfigurationError, GrantConflictError
from core.models import (
    BucketDescriptor,
    Capability,
    FunctionDescriptor,
    KeyAttribute,
    OriginIdentityDescriptor,
    TableDescriptor,
)
from core.policy.engine import GrantEngine, capability_for_verb

TABLE = TableDescriptor(logical_id="HaikuTable", partition_key=KeyAttribute(name="item_id"))
BUCKET = BucketDescriptor(logical_id="AssetBucket")
IDENTITY = OriginIdentityDescriptor(logical_id="OriginIdentity")


def _function(logical_id: str = "GetHaiku") -> FunctionDescriptor:
    return FunctionDescriptor(logical_id=logical_id, handler="api.get_haiku", code="api")


def test_verb_capabilities_allow_read_before_write():
    assert capability_for_verb("get") is Capability.READ
    for verb in ("post", "patch", "delete"):
        assert capability_for_verb(verb) is Capability.READ_WRITE
    with pytest.raises(ConfigurationError):
        capability_for_verb("put")


def test_read_grant_is_scoped_to_table():
    engine = GrantEngine()
    grant = engine.grant(_function(), TABLE, Capability.READ)
    assert grant.policy_owner == "GetHaiku"
    assert grant.resources == ("${HaikuTable.arn}",)
    assert "dynamodb:GetItem" in grant.actions
    assert "dynamodb:PutItem" not in grant.actions


def test_same_grant_twice_yields_one_statement():
    engine = GrantEngine()
    function = _function()
    first = engine.grant(function, TABLE, "read-write")
    second = engine.grant(function, TABLE, Capability.READ_WRITE)
    assert first == second
    assert len(engine.grants) == 1
    assert len(engine.policies["GetHaiku"].statements) == 1


def test_wider_grant_replaces_statement_in_place():
    engine = GrantEngine()
    function = _function("PostHaiku")
    engine.grant(function, TABLE, Capability.READ)
    widened = engine.grant(function, TABLE, Capability.READ_WRITE)
    statements = engine.policies["PostHaiku"].statements
    assert widened.capability is Capability.READ_WRITE
    assert len(statements) == 1
    assert "dynamodb:PutItem" in statements[0].actions
    assert engine.conflicts == []


def test_narrower_grant_is_recorded_and_ignored():
    engine = GrantEngine()
    function = _function("PatchHaiku")
    engine.grant(function, TABLE, Capability.READ_WRITE)
    result = engine.grant(function, TABLE, Capability.READ)
    assert result.capability is Capability.READ_WRITE
    assert "dynamodb:UpdateItem" in engine.policies["PatchHaiku"].statements[0].actions
    assert len(engine.conflicts) == 1
    conflict = engine.conflicts[0]
    assert isinstance(conflict, GrantConflictError)
    assert (conflict.granted, conflict.requested) == ("read-write", "read")


def test_identity_grant_writes_bucket_policy():
    engine = GrantEngine()
    grant = engine.grant(IDENTITY, BUCKET, Capability.READ_OBJECT)
    assert grant.policy_owner == "AssetBucket"
    statement = engine.policies["AssetBucket"].statements[0]
    assert statement.actions == ["s3:GetObject"]
    assert statement.resources == ["${AssetBucket.arn}/*"]
    assert statement.principals == {"CanonicalUser": ["${OriginIdentity.s3_canonical_user_id}"]}
    rendered = engine.policies["AssetBucket"].model_dump(by_alias=True, exclude_none=True)
    assert rendered["Statement"][0]["Principal"]["CanonicalUser"]


def test_identity_statement_omits_principal_for_role_policies():
    engine = GrantEngine()
    engine.grant(_function(), TABLE, Capability.READ)
    rendered = engine.policies["GetHaiku"].model_dump(by_alias=True, exclude_none=True)
    assert "Principal" not in rendered["Statement"][0]


def test_grants_never_use_wildcards():
    engine = GrantEngine()
    engine.grant(_function("GetHaiku"), TABLE, Capability.READ)
    engine.grant(_function("PostHaiku"), TABLE, Capability.READ_WRITE)
    engine.grant(IDENTITY, BUCKET, Capability.READ_OBJECT)
    for grant in engine.grants:
        assert all("*" not in action for action in grant.actions)
        assert all(resource != "*" for resource in grant.resources)


@pytest.mark.parametrize(
    "principal, resource, capability",
    [
        (_function(), BUCKET, Capability.READ_OBJECT),
        (IDENTITY, TABLE, Capability.READ),
        (_function(), TABLE, Capability.READ_OBJECT),
    ],
)
def test_unsupported_pairs_are_rejected(principal, resource, capability):
    with pytest.raises(ConfigurationError):
        GrantEngine().grant(principal, resource, capability)


def test_statement_id_is_capped_length():
    engine = GrantEngine()
    grant = engine.grant(_function("F" * 200), TABLE, Capability.READ)
    assert len(grant.sid) <= 128
