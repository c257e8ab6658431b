from __future__ import annotations

from unittest.mock import Mock

from sheetflow.models.field_mapping import (
    FieldMapping,
    PipelineMappings,
    PipelineOptions,
    field_mappings_to_mapping_state,
    mapping_state_to_field_mappings,
)
from sheetflow.services.mapping_state import (
    MappingStateController,
    compact_field_mappings,
    filter_seed_mappings,
    validate_pipeline_config,
)

HEADERS = ["Full Name", "Email Address", "Age", "Mail"]


def _controller(contact_fields, mappings=(), on_change=None):
    return MappingStateController(
        contact_fields,
        HEADERS,
        PipelineMappings(field_mappings=tuple(mappings)),
        on_change,
    )


def _targets(ctrl):
    return [(m.source, m.target) for m in ctrl.field_mappings]


def test_flat_map_round_trip_keeps_assignment():
    flat = {"a": "x", "b": None, "c": "y"}
    mappings = mapping_state_to_field_mappings(flat)
    assert [(m.source, m.target) for m in mappings] == [("a", "x"), ("c", "y")]
    assert field_mappings_to_mapping_state(mappings, ["a", "b", "c"]) == flat


def test_compact_last_target_wins():
    result = compact_field_mappings(
        [FieldMapping("a", "x"), FieldMapping("b", "y"), FieldMapping("c", "x"), FieldMapping("d", "")]
    )
    assert [(m.source, m.target) for m in result] == [("c", "x"), ("b", "y")]


def test_compact_one_mapping_per_source():
    result = compact_field_mappings([FieldMapping("a", "x"), FieldMapping("a", "y")])
    assert [(m.source, m.target) for m in result] == [("a", "y")]


def test_filter_seed_mappings():
    seed = [
        FieldMapping("Missing", "name"),
        FieldMapping("Email Address", "email"),
        FieldMapping("Mail", "email"),
        FieldMapping("Age", "age"),
    ]
    result = filter_seed_mappings(seed, HEADERS)
    assert [(m.source, m.target) for m in result] == [("Email Address", "email"), ("Age", "age")]


def test_set_mapping_clears_previous_source_for_target(contact_fields):
    ctrl = _controller(contact_fields, [FieldMapping("Email Address", "email")])
    ctrl.set_mapping("Mail", "email")
    assert _targets(ctrl) == [("Mail", "email")]
    assert ctrl.mapping_state == {"Full Name": None, "Email Address": None, "Age": None, "Mail": "email"}


def test_set_mapping_moves_source_to_new_target(contact_fields):
    ctrl = _controller(contact_fields, [FieldMapping("Full Name", "name"), FieldMapping("Age", "age")])
    ctrl.set_mapping("Full Name", "email")
    assert _targets(ctrl) == [("Full Name", "email"), ("Age", "age")]


def test_set_mapping_none_unmaps(contact_fields):
    ctrl = _controller(contact_fields, [FieldMapping("Age", "age")])
    ctrl.set_mapping("Age", None)
    assert ctrl.field_mappings == ()
    assert ctrl.target_for("Age") is None


def test_set_mapping_transform_precedence(contact_fields):
    ctrl = _controller(contact_fields, [FieldMapping("Email Address", "email", transform="toUpperCase")])
    ctrl.set_mapping("Mail", "email")
    assert ctrl.field_mappings[0].transform == "toUpperCase"

    ctrl.set_mapping("Full Name", "name")
    assert ctrl.pipeline.mapping_for_target("name").transform == "trim"

    ctrl.set_mapping("Age", "age")
    assert ctrl.pipeline.mapping_for_target("age").transform is None


def test_set_field_mappings_compacts(contact_fields):
    ctrl = _controller(contact_fields)
    ctrl.set_field_mappings([FieldMapping("Full Name", "name"), FieldMapping("Age", "name")])
    assert _targets(ctrl) == [("Age", "name")]


def test_set_mapping_state_replaces(contact_fields):
    ctrl = _controller(contact_fields, [FieldMapping("Age", "age")])
    ctrl.set_mapping_state({"Full Name": "name", "Age": None})
    assert _targets(ctrl) == [("Full Name", "name")]


def test_set_transform(contact_fields):
    ctrl = _controller(contact_fields, [FieldMapping("Full Name", "name", confidence=0.9)])
    ctrl.set_transform("name", "capitalize")
    assert ctrl.field_mappings[0] == FieldMapping("Full Name", "name", "capitalize", 0.9)


def test_every_mutation_notifies(contact_fields):
    on_change = Mock()
    ctrl = _controller(contact_fields, on_change=on_change)
    ctrl.set_mapping("Age", "age")
    ctrl.set_transform("age", "toNumber")
    ctrl.set_field_mappings([])
    ctrl.set_mapping_state({})
    assert on_change.call_count == 4
    ctrl.reset(headers=["x"])
    assert on_change.call_count == 4


def test_options_survive_mutations(contact_fields):
    options = PipelineOptions(delimiter=";")
    ctrl = MappingStateController(contact_fields, HEADERS, PipelineMappings(options=options))
    ctrl.set_mapping("Age", "age")
    assert ctrl.pipeline.options == options


def test_validate_pipeline_config(contact_fields):
    pipeline = PipelineMappings(
        field_mappings=(FieldMapping("Full Name", "name", transform="shout"), FieldMapping("Age", "age"))
    )
    problems = validate_pipeline_config(contact_fields, pipeline)
    assert problems == [
        "Transform 'shout' referenced by mapping Full Name -> name is not available",
        "Missing mapping for required field 'email'",
    ]
    assert validate_pipeline_config(contact_fields, pipeline, ["shout"]) == [
        "Missing mapping for required field 'email'"
    ]
