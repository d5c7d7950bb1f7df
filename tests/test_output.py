from datetime import datetime, timezone

from cnabrun.claim import ACTION_INSTALL, Claim, default_schema_version
from cnabrun.output import Output, Outputs, new_output
from cnabrun.result import STATUS_SUCCEEDED, Result


def _example_claim():
    return Claim(
        schema_version=default_schema_version(),
        id="id",
        installation="my_claim",
        revision="revision",
        created=datetime(1983, 4, 18, 1, 2, 3, tzinfo=timezone.utc),
        action=ACTION_INSTALL,
        bundle={
            "definitions": {"color": {"type": "string", "default": "blue"}},
            "outputs": {"color": {"definition": "color", "applyTo": [ACTION_INSTALL]}},
        },
    )


def test_output_definition_and_schema():
    claim = _example_claim()
    result = claim.new_result(STATUS_SUCCEEDED)

    output = new_output(claim, result, "color", None)

    schema = output.schema()
    assert schema is not None
    assert schema["type"] == "string"
    assert schema["default"] == "blue"

    definition = output.definition()
    assert definition is not None
    assert definition["applyTo"] == [ACTION_INSTALL]


def test_new_output_links_result_to_claim():
    claim = _example_claim()
    result = Result(id="r1", claim_id="id")
    output = new_output(claim, result, "color", b"blue")
    assert output.result.claim is claim
    assert output.result.id == "r1"
    assert output.value == b"blue"


def test_output_undefined():
    claim = _example_claim()
    output = new_output(claim, Result(id="r"), "missing", None)
    assert output.definition() is None
    assert output.schema() is None


def test_output_definition_without_schema():
    claim = _example_claim()
    claim.bundle["outputs"]["size"] = {"definition": "nope"}
    output = new_output(claim, Result(id="r"), "size", None)
    assert output.definition() == {"definition": "nope"}
    assert output.schema() is None


def _named(name):
    return Output(claim=Claim(), result=Result(), name=name)


def test_outputs_sorted():
    outputs = Outputs([_named("a"), _named("c"), _named("b")])
    names = [outputs.get_by_index(i).name for i in range(len(outputs))]
    assert names == ["a", "b", "c"]
    assert [o.name for o in outputs] == ["a", "b", "c"]


def test_outputs_get_by_name():
    outputs = Outputs([_named("a"), _named("c"), _named("b")])
    assert outputs.get_by_name("c").name == "c"
    assert outputs.get_by_name("z") is None


def test_outputs_get_by_index_out_of_range():
    outputs = Outputs([_named("a")])
    assert outputs.get_by_index(1) is None
    assert outputs.get_by_index(-1) is None
    assert len(outputs) == 1