import os

import pytest

from cnabrun.claim import get_semver
from cnabrun.credentials import (
    CNAB_SPEC_VERSION,
    DEFAULT_SCHEMA_VERSION,
    CredentialError,
    CredentialSet,
    CredentialStrategy,
    load,
    new_credential_set,
    validate,
)

STAGING_YAML = """\
schemaVersion: 1.0.0-DRAFT+b6c701f
name: staging
created: 2020-04-18T01:02:03Z
modified: 2020-04-18T01:02:03Z
credentials:
  - name: run_program
    source:
      command: echo wildebeest
  - name: use_var
    source:
      env: TEST_USE_VAR
  - name: read_file
    source:
      path: {path}
  - name: plain_value
    source:
      value: cassowary
"""


class FakeStore:
    def __init__(self, programs):
        self.programs = programs

    def resolve(self, key, value):
        if key == "env":
            return os.environ[value]
        if key == "value":
            return value
        if key == "path":
            with open(value) as handle:
                return handle.read()
        if key == "command":
            return self.programs[value]
        raise KeyError(f"unknown source {key}")


@pytest.fixture
def staging_file(tmp_path):
    secret_file = tmp_path / "animal.txt"
    secret_file.write_text("serval\n")
    path = tmp_path / "staging.yaml"
    path.write_text(STAGING_YAML.format(path=secret_file))
    return path


def test_resolve_credentials(staging_file, monkeypatch):
    monkeypatch.setenv("TEST_USE_VAR", "kakapu")
    credset = load(staging_file)

    results = credset.resolve_credentials(FakeStore({"echo wildebeest": "wildebeest\n"}))

    assert len(results) == 4
    expected = {
        "run_program": "wildebeest",
        "use_var": "kakapu",
        "read_file": "serval",
        "plain_value": "cassowary",
    }
    for name, value in expected.items():
        assert results[name].strip() == value


def test_load_fields(staging_file):
    credset = load(staging_file)
    assert credset.name == "staging"
    assert credset.schema_version == DEFAULT_SCHEMA_VERSION
    assert credset.created.year == 2020
    assert credset.credentials[3] == CredentialStrategy(
        name="plain_value", source_key="value", source_value="cassowary"
    )


def test_load_missing_file(tmp_path):
    with pytest.raises(OSError):
        load(tmp_path / "missing.yaml")


def test_resolve_error_names_credential():
    credset = CredentialSet(credentials=[CredentialStrategy("pw", "env", "NOT_SET_ANYWHERE_XYZ")])
    with pytest.raises(CredentialError, match='^credential "pw": '):
        credset.resolve_credentials(FakeStore({}))


def test_cnab_spec_version():
    assert get_semver(CNAB_SPEC_VERSION) == DEFAULT_SCHEMA_VERSION


def test_new_credential_set():
    cs = new_credential_set(
        "mycreds", CredentialStrategy(name="password", source_key="env", source_value="MY_PASSWORD")
    )
    assert cs.name == "mycreds"
    assert cs.created is not None
    assert cs.created == cs.modified
    assert cs.schema_version == DEFAULT_SCHEMA_VERSION
    assert len(cs.credentials) == 1


def test_to_dict():
    cs = CredentialSet(
        schema_version=DEFAULT_SCHEMA_VERSION,
        name="c",
        credentials=[CredentialStrategy("a", "env", "A")],
    )
    data = cs.to_dict()
    assert data["credentials"] == [{"name": "a", "source": {"env": "A"}}]
    assert data["created"] == "0001-01-01T00:00:00Z"


def test_validate_credential_specified():
    spec = {"kubeconfig": {"applyTo": ["install"], "required": True}}
    assert validate({"kubeconfig": "top secret creds"}, spec, "install") is None
    with pytest.raises(CredentialError, match="bundle requires credential"):
        validate({}, spec, "install")


def test_validate_credential_not_required():
    spec = {"kubeconfig": {"applyTo": ["install"], "required": False}}
    assert validate({}, spec, "install") is None


def test_validate_missing_inapplicable_credential():
    spec = {"kubeconfig": {"applyTo": ["install"], "required": True}}
    assert validate({}, spec, "custom") is None


def test_validate_missing_required_credential():
    spec = {"kubeconfig": {"applyTo": ["install"], "required": True}}
    with pytest.raises(CredentialError, match="bundle requires credential"):
        validate({}, spec, "install")