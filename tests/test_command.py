import io
import json
import os
from pathlib import Path

import pytest

from cnabrun.command import CommandDriver
from cnabrun.driver import DriverError, Operation

OUTPUTS_BOTH = """#!/bin/sh
mkdir -p "${CNAB_OUTPUT_DIR}/cnab/app/outputs"
echo "TEST_OUTPUT_1" >> "${CNAB_OUTPUT_DIR}/cnab/app/outputs/output1"
echo "TEST_OUTPUT_2" >> "${CNAB_OUTPUT_DIR}/cnab/app/outputs/output2"
"""

OUTPUTS_ONE = """#!/bin/sh
mkdir -p "${CNAB_OUTPUT_DIR}/cnab/app/outputs"
echo "TEST_OUTPUT_1" >> "${CNAB_OUTPUT_DIR}/cnab/app/outputs/output1"
"""

HANDLES = """#!/bin/sh
echo "test,debug"
"""


def make_driver(tmp_path, monkeypatch, name, content, explicit_path):
    script = tmp_path / f"cnab-{name.lower()}"
    script.write_text(content)
    script.chmod(0o755)
    if explicit_path:
        return CommandDriver(name, str(script))
    monkeypatch.setenv("PATH", f"{tmp_path}{os.pathsep}{os.environ.get('PATH', '')}")
    return CommandDriver(name)


def build_op():
    return Operation(
        action="install",
        installation="test",
        parameters={},
        image={"image": "cnab/helloworld:latest", "imageType": "docker"},
        revision="01DDY0MT808KX0GGZ6SMXN4TW",
        environment={},
        files={"/cnab/app/image-map.json": "{}"},
        outputs={
            "/cnab/app/outputs/output1": "output1",
            "/cnab/app/outputs/output2": "output2",
        },
        out=io.StringIO(),
        err=io.StringIO(),
        bundle={
            "definitions": {"output1": {}, "output2": {}},
            "outputs": {
                "output1": {"definition": "output1", "path": "/cnab/app/outputs/output1"},
                "output2": {"definition": "output2", "path": "/cnab/app/outputs/output2"},
            },
        },
    )


def test_missing_driver_does_not_exist(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    assert CommandDriver("missing-driver").check_driver_exists() is False


def test_missing_driver_with_path_set(tmp_path, monkeypatch):
    driver = make_driver(tmp_path, monkeypatch, "missing-driver", "", True)
    driver.path = "/missing-driver.sh"
    assert driver.check_driver_exists() is False


@pytest.mark.parametrize("explicit_path", [False, True])
def test_existing_driver(tmp_path, monkeypatch, explicit_path):
    driver = make_driver(tmp_path, monkeypatch, "existing-driver", "", explicit_path)
    assert driver.check_driver_exists() is True


def test_command_name_is_lower_cased(tmp_path, monkeypatch):
    make_driver(tmp_path, monkeypatch, "existing-driver", "", False)
    driver = CommandDriver("Existing-Driver")
    assert driver.command == "cnab-existing-driver"
    assert driver.check_driver_exists() is True


@pytest.mark.parametrize("explicit_path", [False, True])
def test_handles(tmp_path, monkeypatch, explicit_path):
    driver = make_driver(tmp_path, monkeypatch, "can-handle-driver", HANDLES, explicit_path)
    assert driver.handles("test") is True
    assert driver.handles("debug") is True
    assert driver.handles("docker") is False


def test_handles_missing_driver(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    assert CommandDriver("nowhere").handles("test") is False


@pytest.mark.parametrize("explicit_path", [False, True])
def test_outputs_exist(tmp_path, monkeypatch, explicit_path):
    driver = make_driver(tmp_path, monkeypatch, "test-outputs-exist.sh", OUTPUTS_BOTH, explicit_path)
    assert driver.check_driver_exists()
    result = driver.run(build_op())
    assert result.outputs == {"output1": "TEST_OUTPUT_1\n", "output2": "TEST_OUTPUT_2\n"}


def test_output_missing_no_defaults(tmp_path, monkeypatch):
    driver = make_driver(tmp_path, monkeypatch, "test-outputs-missing.sh", OUTPUTS_ONE, False)
    result = driver.run(build_op())
    assert result.outputs == {"output1": "TEST_OUTPUT_1\n"}


def test_output_missing_default_set(tmp_path, monkeypatch):
    driver = make_driver(tmp_path, monkeypatch, "test-outputs-missing.sh", OUTPUTS_ONE, False)
    op = build_op()
    op.bundle["definitions"]["output2"]["default"] = "DEFAULT OUTPUT 2"
    result = driver.run(op)
    assert len(result.outputs) == 1
    assert result.outputs == {"output1": "TEST_OUTPUT_1\n"}


def test_environment_and_output_dir(tmp_path, monkeypatch):
    content = """#!/bin/sh
echo "$CNAB_VARS"
echo "$FOO"
echo "$CNAB_OUTPUT_DIR"
"""
    driver = make_driver(tmp_path, monkeypatch, "env-driver", content, True)
    op = build_op()
    op.environment = {"FOO": "bar"}
    driver.run(op)
    lines = op.out.getvalue().splitlines()
    assert lines[0] == "FOO,CNAB_OUTPUT_DIR"
    assert lines[1] == "bar"
    assert lines[2] != ""
    assert not Path(lines[2]).exists()


def test_vars_without_outputs(tmp_path, monkeypatch):
    content = """#!/bin/sh
echo "[$CNAB_VARS]"
echo "[$CNAB_OUTPUT_DIR]"
"""
    driver = make_driver(tmp_path, monkeypatch, "env-driver", content, True)
    op = build_op()
    op.outputs = {}
    op.environment = {"A": "1"}
    result = driver.run(op)
    assert op.out.getvalue() == "[A]\n[]\n"
    assert result.outputs == {}


def test_operation_passed_on_stdin(tmp_path, monkeypatch):
    content = """#!/bin/sh
mkdir -p "${CNAB_OUTPUT_DIR}/cnab/app/outputs"
cat > "${CNAB_OUTPUT_DIR}/cnab/app/outputs/output1"
"""
    driver = make_driver(tmp_path, monkeypatch, "stdin-driver", content, True)
    result = driver.run(build_op())
    received = json.loads(result.outputs["output1"])
    assert received["installation_name"] == "test"
    assert received["action"] == "install"
    assert received["files"] == {"/cnab/app/image-map.json": "{}"}


def test_stderr_is_forwarded(tmp_path, monkeypatch):
    content = """#!/bin/sh
echo "oops" 1>&2
"""
    driver = make_driver(tmp_path, monkeypatch, "stderr-driver", content, True)
    op = build_op()
    op.outputs = {}
    driver.run(op)
    assert op.err.getvalue() == "oops\n"


def test_failing_command_raises(tmp_path, monkeypatch):
    content = """#!/bin/sh
exit 3
"""
    driver = make_driver(tmp_path, monkeypatch, "failing-driver", content, True)
    with pytest.raises(DriverError, match=r"Command driver \(failing-driver\) failed executing bundle"):
        driver.run(build_op())


def test_missing_executable_fails_to_start(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", str(tmp_path))
    driver = CommandDriver("absent")
    with pytest.raises(DriverError, match=r"Start of driver \(absent\) failed"):
        driver.run(build_op())