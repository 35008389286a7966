"""Dependency ordering tests."""

from __future__ import annotations

import pytest

from core.errors import ConfigurationError, CyclicDependencyError
from core.models import ParameterDescriptor, Ref, TableDescriptor
from core.ordering import DependencyGraph, order


def _param(logical_id: str, value, name: str | None = None, depends_on=()) -> ParameterDescriptor:
    return ParameterDescriptor(
        logical_id=logical_id,
        parameter_name=name or logical_id,
        value=value,
        depends_on=depends_on,
    )


def _table(logical_id: str = "HaikuTable") -> TableDescriptor:
    return TableDescriptor(logical_id=logical_id, partition_key={"name": "item_id"})


def test_dependencies_come_first_regardless_of_declaration():
    resources = [
        _param("TableNameParameter", Ref(target="HaikuTable", attribute="name")),
        _table(),
    ]
    assert [resource.logical_id for resource in order(resources)] == ["HaikuTable", "TableNameParameter"]


def test_independent_resources_keep_declaration_order():
    resources = [_param("Zeta", "z"), _param("Alpha", "a"), _param("Mid", "m")]
    assert [resource.logical_id for resource in order(resources)] == ["Zeta", "Alpha", "Mid"]


def test_explicit_depends_on_is_an_edge():
    resources = [_param("Late", "x", depends_on=("Early",)), _param("Early", "y")]
    assert [resource.logical_id for resource in order(resources)] == ["Early", "Late"]


def test_cycle_is_reported_with_members():
    resources = [
        _param("Left", Ref(target="Right", attribute="name")),
        _param("Right", Ref(target="Left", attribute="name")),
    ]
    with pytest.raises(CyclicDependencyError) as excinfo:
        order(resources)
    assert excinfo.value.cycle[0] == excinfo.value.cycle[-1]
    assert set(excinfo.value.cycle) == {"Left", "Right"}


def test_self_reference_is_a_cycle():
    with pytest.raises(CyclicDependencyError):
        order([_param("Loop", Ref(target="Loop", attribute="name"))])


def test_undeclared_target_is_rejected():
    with pytest.raises(ConfigurationError, match="undeclared resource 'Missing'"):
        order([_param("Orphan", Ref(target="Missing", attribute="name"))])


def test_duplicate_logical_ids_are_rejected():
    with pytest.raises(ConfigurationError, match="declared twice"):
        order([_table(), _table()])


def test_dependents_lists_consumers():
    graph = DependencyGraph.from_resources(
        [
            _table(),
            _param("First", Ref(target="HaikuTable", attribute="name")),
            _param("Second", Ref(target="HaikuTable", attribute="arn")),
        ]
    )
    assert graph.dependents("HaikuTable") == ["First", "Second"]
    assert graph.edges["First"] == ("HaikuTable",)
