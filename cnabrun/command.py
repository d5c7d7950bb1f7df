"""A driver that delegates to an external ``cnab-NAME`` executable."""

from __future__ import annotations

import contextlib
import io
import os
import shutil
import subprocess
import sys
import tempfile
import threading
from pathlib import Path
from typing import IO, TextIO

from .driver import Driver, DriverError, Operation, OperationResult

OUTPUT_DIR_VARIABLE = "CNAB_OUTPUT_DIR"
VARS_VARIABLE = "CNAB_VARS"


def _feed(pipe: IO[bytes], payload: bytes) -> None:
    """Write ``payload`` to the child's stdin, tolerating an early exit."""
    with contextlib.suppress(BrokenPipeError, OSError):
        pipe.write(payload)
    with contextlib.suppress(BrokenPipeError, OSError):
        pipe.close()


def _pump(pipe: IO[bytes], stream: TextIO) -> None:
    """Copy the child's output to ``stream`` as it arrives."""
    reader = io.TextIOWrapper(pipe, encoding="utf-8", errors="replace", newline="")
    with reader:
        for line in reader:
            stream.write(line)
            with contextlib.suppress(AttributeError, ValueError, OSError):
                stream.flush()


class CommandDriver(Driver):
    """Runs operations through a system command.

    When ``path`` is empty the executable is looked up on PATH as
    ``cnab-`` followed by the lower-cased driver name.
    """

    def __init__(self, name: str, path: str = "") -> None:
        self.name = name
        self.path = path

    def __repr__(self) -> str:
        return f"CommandDriver(name={self.name!r}, path={self.path!r})"

    @property
    def command(self) -> str:
        """The executable that is started for this driver."""
        if self.path:
            return self.path
        return "cnab-" + self.name.lower()

    def run(self, op: Operation) -> OperationResult:
        env = dict(os.environ)
        added: list[str] = []
        for key, value in op.environment.items():
            env[key] = value
            added.append(key)

        with contextlib.ExitStack() as stack:
            output_dir = ""
            if op.outputs:
                output_dir = stack.enter_context(
                    tempfile.TemporaryDirectory(prefix="bundleoutput")
                )
                env[OUTPUT_DIR_VARIABLE] = output_dir
                added.append(OUTPUT_DIR_VARIABLE)

            env[VARS_VARIABLE] = ",".join(added)
            payload = op.to_json().encode("utf-8")

            self._execute(env, payload, op)

            try:
                return self._collect_outputs(op, output_dir)
            except DriverError as err:
                raise DriverError(
                    f"Command driver ({self.name}) failed getting operation result: {err}"
                ) from err

    def handles(self, image_type: str) -> bool:
        """Ask the executable, via ``--handles``, which image types it supports."""
        try:
            completed = subprocess.run(
                [self.command, "--handles"],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError):
            return False
        types = completed.stdout.decode("utf-8", errors="replace").split(",")
        return any(image_type == kind.strip() for kind in types)

    def check_driver_exists(self) -> bool:
        """Report whether the driver's executable can be found."""
        if self.path:
            return os.path.exists(self.path)
        return shutil.which(self.command) is not None

    def _execute(self, env: dict[str, str], payload: bytes, op: Operation) -> None:
        try:
            process = subprocess.Popen(
                [self.command],
                cwd=os.getcwd(),
                env=env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as err:
            raise DriverError(f"Start of driver ({self.name}) failed: {err}") from err

        workers = [
            threading.Thread(target=_feed, args=(process.stdin, payload), daemon=True),
            threading.Thread(
                target=_pump,
                args=(process.stdout, op.out if op.out is not None else sys.stdout),
                daemon=True,
            ),
            threading.Thread(
                target=_pump,
                args=(process.stderr, op.err if op.err is not None else sys.stderr),
                daemon=True,
            ),
        ]
        for worker in workers:
            worker.start()
        returncode = process.wait()
        for worker in workers:
            worker.join()

        if returncode != 0:
            raise DriverError(
                f"Command driver ({self.name}) failed executing bundle: exit status {returncode}"
            )

    def _collect_outputs(self, op: Operation, output_dir: str) -> OperationResult:
        outputs: dict[str, str] = {}
        for output_path, output_name in op.outputs.items():
            file = Path(output_dir, output_path.lstrip("/"))
            try:
                contents = file.read_bytes()
            except FileNotFoundError:
                continue
            except OSError as err:
                raise DriverError(
                    f"Command driver ({self.name}) failed reading output file: "
                    f"{output_path} Error: {err}"
                ) from err
            outputs[output_name] = contents.decode("utf-8", errors="replace")
        return OperationResult(outputs=outputs)