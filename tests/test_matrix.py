from __future__ import annotations

import pytest

from plumber.dag import build_graph
from plumber.errors import DUPLICATE_AXIS, EMPTY_AXIS, ConfigError
from plumber.matrix import MULTIPLE_UNITS_LINE, SINGLE_UNIT_LINE, describe_units, expand, expand_phase
from plumber.model import MatrixAxis, PhaseSpec


def test_phase_without_matrix_is_one_unit() -> None:
    s = expand_phase(PhaseSpec("build"), 0)
    assert [u.display_name for u in s.units] == ["build"]
    assert s.units[0].label == "[build]"
    assert s.units[0].env == {}
    assert not s.is_parallel


def test_single_axis_two_values() -> None:
    phase = PhaseSpec("echo-phase", matrix=(MatrixAxis("FOO", ("bar", "baz")),))
    s = expand_phase(phase, 0)
    assert [u.display_name for u in s.units] == ["echo-phase+FOO=bar", "echo-phase+FOO=baz"]
    assert s.units[1].env == {"FOO": "baz"}
    assert s.is_parallel


def test_two_axes_cross_product_in_declaration_order() -> None:
    phase = PhaseSpec(
        "echo-phase",
        matrix=(MatrixAxis("FOO", ("bar", "baz")), MatrixAxis("PANTS", ("trousers", "slacks"))),
    )
    labels = [u.label for u in expand_phase(phase, 0).units]
    assert labels == [
        "[echo-phase+FOO=bar,PANTS=trousers]",
        "[echo-phase+FOO=bar,PANTS=slacks]",
        "[echo-phase+FOO=baz,PANTS=trousers]",
        "[echo-phase+FOO=baz,PANTS=slacks]",
    ]


def test_duplicate_axis_rejected() -> None:
    phase = PhaseSpec("p", matrix=(MatrixAxis("FOO", ("a",)), MatrixAxis("FOO", ("b",))))
    with pytest.raises(ConfigError) as exc:
        expand_phase(phase, 0)
    assert exc.value.kind == DUPLICATE_AXIS


def test_empty_axis_rejected() -> None:
    phase = PhaseSpec("p", matrix=(MatrixAxis("FOO", ()),))
    with pytest.raises(ConfigError) as exc:
        expand_phase(phase, 0)
    assert exc.value.kind == EMPTY_AXIS


def test_expand_returns_sets_in_topological_order() -> None:
    phases = [PhaseSpec("test", after=("build",)), PhaseSpec("build")]
    sets = expand(phases, build_graph(phases))
    assert [s.name for s in sets] == ["build", "test"]
    assert [s.index for s in sets] == [1, 0]


def test_describe_units_heading() -> None:
    one = expand_phase(PhaseSpec("a"), 0).units
    two = expand_phase(PhaseSpec("b", matrix=(MatrixAxis("X", ("1", "2")),)), 1).units
    assert describe_units(one) == SINGLE_UNIT_LINE
    assert describe_units(two) == MULTIPLE_UNITS_LINE
