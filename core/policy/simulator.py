"""Check that each API function's policy allows what its verb needs."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, cast

from core.models import FunctionDescriptor, PolicyDoc, RestApiDescriptor, TOKEN_PATTERN

if TYPE_CHECKING:  # pragma: no cover
    from core.assembler import Topology

# Minimal operations each handler performs against the table.
VERB_REQUIRED_ACTIONS: Dict[str, tuple[str, ...]] = {
    "GET": ("dynamodb:Scan", "dynamodb:GetItem"),
    "POST": ("dynamodb:PutItem",),
    "PATCH": ("dynamodb:GetItem", "dynamodb:UpdateItem"),
    "DELETE": ("dynamodb:DeleteItem",),
}

_ARN_TEMPLATES = {
    "table": "arn:aws:dynamodb:{region}:{account}:table/{name}",
    "bucket": "arn:aws:s3:::{name}",
    "function": "arn:aws:lambda:{region}:{account}:function:{name}",
}


@dataclass
class SimulationCase:
    action: str
    resource: str = "*"


class PolicySimulator:
    """Evaluate policy documents against test cases.

    Without a client the statements are matched locally; with a boto3 IAM
    client the cases run through ``SimulateCustomPolicy``. Generated
    identifiers are replaced by placeholder ARNs before evaluation.
    """

    def __init__(self, client: Any | None = None, *, region: str = "us-east-1", account_id: str = "123456789012") -> None:
        self._client = client
        self.region = region
        self.account_id = account_id

    def verify(self, topology: "Topology") -> list[dict[str, Any]]:
        kinds = {resource.logical_id: resource.kind for resource in topology.resources}
        rows: list[dict[str, Any]] = []
        for resource in topology.of_kind("rest_api"):
            api = cast(RestApiDescriptor, resource)
            for route in api.routes:
                function = cast(FunctionDescriptor, topology.get(route.function.target))
                required = VERB_REQUIRED_ACTIONS.get(route.method, ())
                tables = sorted({ref.target for ref in function.references() if kinds.get(ref.target) == "table"})
                policy = self._concretize(topology.policies.get(function.logical_id, PolicyDoc()), kinds)  # type: ignore[call-arg]
                cases = [
                    SimulationCase(action=action, resource=self._arn(table, kinds[table]))
                    for table in tables
                    for action in required
                ]
                results = self._run(policy, cases) if cases else {}
                for case in cases:
                    rows.append(
                        {
                            "function": function.logical_id,
                            "route": f"{route.method} {route.path}",
                            "action": case.action,
                            "resource": case.resource,
                            "decision": results.get((case.action, case.resource), "Deny"),
                        }
                    )
        return rows

    def evaluate(self, policy: PolicyDoc, cases: List[SimulationCase]) -> Dict[tuple[str, str], str]:
        return self._run(policy, cases)

    # ------------------------------------------------------------------
    def _run(self, policy: PolicyDoc, cases: List[SimulationCase]) -> Dict[tuple[str, str], str]:
        if self._client:
            return self._aws_simulate(policy, cases)
        return self._local_simulate(policy, cases)

    def _aws_simulate(self, policy: PolicyDoc, cases: List[SimulationCase]) -> Dict[tuple[str, str], str]:
        statements = [statement.model_dump(by_alias=True, exclude_none=True) for statement in policy.statements]
        response = self._client.simulate_custom_policy(  # type: ignore[union-attr]
            PolicyInputList=[json.dumps({"Version": policy.version, "Statement": statements})],
            ActionNames=sorted({case.action for case in cases}),
            ResourceArns=sorted({case.resource for case in cases}),
        )

        results: Dict[tuple[str, str], str] = {}
        for entry in response.get("EvaluationResults", []):
            action = entry.get("EvalActionName", "")
            resource = entry.get("EvalResourceName", "*")
            decision = entry.get("EvalDecision", "implicitDeny")
            results[(action, resource)] = "Allow" if decision == "allowed" else "Deny"
        return results

    def _local_simulate(self, policy: PolicyDoc, cases: List[SimulationCase]) -> Dict[tuple[str, str], str]:
        results: Dict[tuple[str, str], str] = {}
        for case in cases:
            decision = "Deny"
            for statement in policy.statements:
                if statement.effect != "Allow":
                    continue
                if not self._action_matches(case.action, statement.actions):
                    continue
                if not self._resource_matches(case.resource, statement.resources):
                    continue
                decision = "Allow"
                break
            results[(case.action, case.resource)] = decision
        return results

    def _arn(self, name: str, kind: str) -> str:
        template = _ARN_TEMPLATES.get(kind)
        if template is None:
            return name
        return template.format(region=self.region, account=self.account_id, name=name)

    def _concretize(self, policy: PolicyDoc, kinds: Dict[str, str]) -> PolicyDoc:
        def replace(match: Any) -> str:
            target, attribute = match.group(1), match.group(2)
            if attribute == "arn" and target in kinds:
                return self._arn(target, kinds[target])
            return match.group(0)

        concrete = policy.model_copy(deep=True)
        for statement in concrete.statements:
            statement.resources = [TOKEN_PATTERN.sub(replace, resource) for resource in statement.resources]
        return concrete

    @staticmethod
    def _action_matches(action: str, patterns: list[str]) -> bool:
        for pattern in patterns:
            if pattern == action:
                return True
            if pattern.endswith("*") and action.startswith(pattern[:-1]):
                return True
        return False

    @staticmethod
    def _resource_matches(resource: str, patterns: list[str]) -> bool:
        if not patterns:
            return resource == "*"
        for pattern in patterns:
            if pattern == "*" or pattern == resource:
                return True
            if pattern.endswith("*") and resource.startswith(pattern[:-1]):
                return True
        return False


__all__ = ["PolicySimulator", "SimulationCase", "VERB_REQUIRED_ACTIONS"]
