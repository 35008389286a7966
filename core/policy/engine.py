"""Compute least-privilege grants between topology resources."""

from __future__ import annotations

import logging
import re
from typing import Dict, Tuple

from core.errors import ConfigurationError, GrantConflictError
from core.models import AccessGrant, Capability, PolicyDoc, PolicyStatement, ResourceDescriptor

logger = logging.getLogger(__name__)

TABLE_READ_ACTIONS: Tuple[str, ...] = (
    "dynamodb:BatchGetItem",
    "dynamodb:ConditionCheckItem",
    "dynamodb:DescribeTable",
    "dynamodb:GetItem",
    "dynamodb:GetRecords",
    "dynamodb:GetShardIterator",
    "dynamodb:Query",
    "dynamodb:Scan",
)
TABLE_WRITE_ACTIONS: Tuple[str, ...] = (
    "dynamodb:BatchWriteItem",
    "dynamodb:DeleteItem",
    "dynamodb:PutItem",
    "dynamodb:UpdateItem",
)

CAPABILITY_ACTIONS: Dict[Capability, Tuple[str, ...]] = {
    Capability.READ: TABLE_READ_ACTIONS,
    Capability.READ_WRITE: TABLE_READ_ACTIONS + TABLE_WRITE_ACTIONS,
    Capability.READ_OBJECT: ("s3:GetObject",),
}

# Writers also read so handlers can load an item before changing it.
VERB_CAPABILITY: Dict[str, Capability] = {
    "get": Capability.READ,
    "post": Capability.READ_WRITE,
    "patch": Capability.READ_WRITE,
    "delete": Capability.READ_WRITE,
}

SUPPORTED_PAIRS: Dict[Tuple[str, str], frozenset[Capability]] = {
    ("function", "table"): frozenset({Capability.READ, Capability.READ_WRITE}),
    ("origin_identity", "bucket"): frozenset({Capability.READ_OBJECT}),
}

_RANK = {
    Capability.READ: 1,
    Capability.READ_WRITE: 2,
    Capability.READ_OBJECT: 1,
}


def capability_for_verb(verb: str) -> Capability:
    try:
        return VERB_CAPABILITY[verb.lower()]
    except KeyError:
        raise ConfigurationError(f"no capability is defined for verb '{verb}'") from None


class GrantEngine:
    """Apply grants and keep the policy documents they produce.

    Compute grants land in the principal's execution-role policy; the delivery
    identity's grant lands in the bucket's resource policy. Grants only widen.
    """

    def __init__(self) -> None:
        self._grants: dict[tuple[str, str], AccessGrant] = {}
        self._policies: dict[str, PolicyDoc] = {}
        self.conflicts: list[GrantConflictError] = []

    @property
    def grants(self) -> list[AccessGrant]:
        return list(self._grants.values())

    @property
    def policies(self) -> dict[str, PolicyDoc]:
        return {owner: doc.model_copy(deep=True) for owner, doc in self._policies.items()}

    def lookup(self, principal: str, resource: str) -> AccessGrant | None:
        return self._grants.get((principal, resource))

    def grant(
        self,
        principal: ResourceDescriptor,
        resource: ResourceDescriptor,
        capability: Capability | str,
    ) -> AccessGrant:
        try:
            capability = Capability(capability)
        except ValueError:
            raise ConfigurationError(f"unknown capability '{capability}'") from None

        pair = (principal.kind, resource.kind)  # type: ignore[attr-defined]
        allowed = SUPPORTED_PAIRS.get(pair)
        if allowed is None or capability not in allowed:
            raise ConfigurationError(
                f"cannot grant '{capability.value}' from {pair[0]} {principal.logical_id} "
                f"to {pair[1]} {resource.logical_id}"
            )

        key = (principal.logical_id, resource.logical_id)
        existing = self._grants.get(key)
        if existing is not None:
            if existing.capability == capability:
                return existing
            if _RANK[capability] < _RANK[existing.capability]:
                conflict = GrantConflictError(
                    principal.logical_id,
                    resource.logical_id,
                    existing.capability.value,
                    capability.value,
                )
                self.conflicts.append(conflict)
                logger.warning("%s", conflict)
                return existing
            logger.debug("widening %s on %s to %s", principal.logical_id, resource.logical_id, capability.value)

        access = self._materialize(principal, resource, capability)
        self._grants[key] = access
        self._write_statement(access, principal)
        return access

    # ------------------------------------------------------------------
    def _materialize(
        self,
        principal: ResourceDescriptor,
        resource: ResourceDescriptor,
        capability: Capability,
    ) -> AccessGrant:
        if capability is Capability.READ_OBJECT:
            owner = resource.logical_id
            resources = (resource.ref("arn", "/*").token,)
        else:
            owner = principal.logical_id
            resources = (resource.ref("arn").token,)

        actions = tuple(sorted(CAPABILITY_ACTIONS[capability]))
        self._check_scope(actions, resources)
        return AccessGrant(
            principal=principal.logical_id,
            resource=resource.logical_id,
            capability=capability,
            actions=actions,
            resources=resources,
            policy_owner=owner,
            sid=self._build_sid(principal.logical_id, resource.logical_id),
        )

    def _write_statement(self, access: AccessGrant, principal: ResourceDescriptor) -> None:
        principals = None
        if access.capability is Capability.READ_OBJECT:
            principals = {"CanonicalUser": [principal.ref("s3_canonical_user_id").token]}
        statement = PolicyStatement(  # type: ignore[call-arg]
            sid=access.sid,
            principals=principals,
            actions=list(access.actions),
            resources=list(access.resources),
        )

        document = self._policies.setdefault(access.policy_owner, PolicyDoc())  # type: ignore[call-arg]
        for index, current in enumerate(document.statements):
            if current.sid == statement.sid:
                document.statements[index] = statement
                return
        document.statements.append(statement)

    @staticmethod
    def _check_scope(actions: Tuple[str, ...], resources: Tuple[str, ...]) -> None:
        for action in actions:
            if "*" in action:
                raise ConfigurationError(f"wildcard action '{action}' is wider than any capability")
        for resource in resources:
            if resource == "*" or not resource.startswith("${"):
                raise ConfigurationError(f"grant resource '{resource}' is not scoped to a single resource")

    @staticmethod
    def _build_sid(principal: str, resource: str) -> str:
        sid = re.sub(r"[^A-Za-z0-9]", "", f"Allow{principal}On{resource}")
        return sid[:128]


__all__ = [
    "GrantEngine",
    "capability_for_verb",
    "CAPABILITY_ACTIONS",
    "VERB_CAPABILITY",
    "TABLE_READ_ACTIONS",
    "TABLE_WRITE_ACTIONS",
]
