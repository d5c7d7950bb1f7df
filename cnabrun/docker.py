"""A driver that runs invocation images with the Docker command line client."""

from __future__ import annotations

import codecs
import copy
import io
import json
import posixpath
import re
import subprocess
import sys
import tarfile
import threading
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Iterable, TextIO

from .driver import (
    IMAGE_TYPE_DOCKER,
    IMAGE_TYPE_OCI,
    Configurable,
    Driver,
    DriverError,
    Operation,
    OperationResult,
)

SETTING_NETWORK = "DOCKER_NETWORK"
SETTING_PULL_ALWAYS = "PULL_ALWAYS"
SETTING_QUIET = "DOCKER_DRIVER_QUIET"
SETTING_CLEANUP_CONTAINERS = "CLEANUP_CONTAINERS"

ENTRYPOINT = "/cnab/app/run"
OUTPUTS_DIR = "/cnab/app/outputs"

_ALNUM = r"[a-z0-9]+"
_SEPARATOR = r"(?:[._]|__|[-]+)"
_PATH_COMPONENT = rf"{_ALNUM}(?:{_SEPARATOR}{_ALNUM})*"
_DOMAIN_COMPONENT = r"(?:[a-zA-Z0-9]|[a-zA-Z0-9][a-zA-Z0-9-]*[a-zA-Z0-9])"
_DOMAIN = rf"{_DOMAIN_COMPONENT}(?:\.{_DOMAIN_COMPONENT})*(?::[0-9]+)?"
_TAG = r"[\w][\w.-]{0,127}"
_DIGEST = r"[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9A-Fa-f]{32,}"
_REFERENCE = re.compile(
    rf"^((?:{_DOMAIN}/)?{_PATH_COMPONENT}(?:/{_PATH_COMPONENT})*)"
    rf"(?::({_TAG}))?(?:@({_DIGEST}))?$"
)
_DIGEST_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}
_MAX_NAME_LENGTH = 255
_INTEGER = re.compile(r"[+-]?\d+")


@dataclass
class ContainerConfig:
    """Settings of the container created for an operation."""

    image: str = ""
    env: list[str] = field(default_factory=list)
    entrypoint: list[str] = field(default_factory=list)
    cmd: list[str] = field(default_factory=list)
    user: str = ""
    working_dir: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    attach_stdout: bool = False
    attach_stderr: bool = False


@dataclass
class HostConfig:
    """Host-side settings of the container created for an operation."""

    network_mode: str = ""
    privileged: bool = False
    cap_add: list[str] = field(default_factory=list)
    cap_drop: list[str] = field(default_factory=list)
    binds: list[str] = field(default_factory=list)
    extra_hosts: list[str] = field(default_factory=list)
    security_opt: list[str] = field(default_factory=list)
    dns: list[str] = field(default_factory=list)


ConfigurationOption = Callable[[ContainerConfig, HostConfig], None]


def get_container_user_id(user: str) -> int:
    """Return the numeric user id from an image's USER setting, or 0 (root)."""
    if user:
        head = user.split(":")[0]
        if _INTEGER.fullmatch(head):
            return int(head)
    return 0


def _reference_digest(reference: str) -> str | None:
    """Parse an image reference and return its digest, if it has one.

    Raises ValueError when the reference is malformed.
    """
    match = _REFERENCE.match(reference)
    if match is None:
        raise ValueError(f"invalid reference format: {reference}")
    name, _tag, digest = match.groups()
    if len(name) > _MAX_NAME_LENGTH:
        raise ValueError(f"repository name must not be more than {_MAX_NAME_LENGTH} characters")
    if digest is None:
        return None
    algorithm, _, encoded = digest.partition(":")
    expected = _DIGEST_HEX_LENGTHS.get(algorithm)
    if expected is None:
        raise ValueError(f"unsupported digest algorithm {algorithm}")
    if len(encoded) != expected or not re.fullmatch(r"[a-f0-9]+", encoded):
        raise ValueError(f"invalid digest {digest}")
    return digest


def validate_image_digest(image: dict[str, Any], repo_digests: Iterable[str]) -> None:
    """Check the image's declared content digest against the inspected repo digests."""
    image_name = image.get("image", "")
    digest = image.get("contentDigest", "")
    if not digest:
        return
    repo_digests = list(repo_digests)
    if not repo_digests:
        raise DriverError(f"image {image_name} has no repo digests")
    for repo_digest in repo_digests:
        try:
            found = _reference_digest(repo_digest)
        except ValueError:
            raise DriverError(f"unable to parse repo digest {repo_digest}") from None
        if found is not None and found == digest:
            return
    raise DriverError(
        f"content digest mismatch: invocation image {image_name} was defined in the bundle "
        f"with the digest {digest} but no matching repoDigest was found upon inspecting the image"
    )


def generate_tar(files: dict[str, str], uid: int) -> bytes:
    """Build a tar archive of ``files`` (absolute path -> content) owned by ``uid``."""
    for path in files:
        if not posixpath.isabs(path):
            raise DriverError(f"destination path {path} should be an absolute unix path")

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for path, content in files.items():
            directory = path
            while directory != "/":
                parent = posixpath.dirname(directory)
                if parent == directory:
                    break
                directory = parent
                info = tarfile.TarInfo(directory)
                info.type = tarfile.DIRTYPE
                info.mode = 0o700
                info.uid = uid
                archive.addfile(info)

            data = content.encode("utf-8")
            info = tarfile.TarInfo(path)
            info.type = tarfile.REGTYPE
            info.mode = 0o600
            info.uid = uid
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _with_result(error: DriverError, result: OperationResult) -> DriverError:
    error.result = result  # partial outputs collected before the failure
    return error


def _container_error(message: str, fetch_error: Exception | None) -> str:
    if fetch_error is not None:
        return f"{message}. fetching outputs failed: {fetch_error}"
    return message


def _pump(pipe: IO[bytes], stream: TextIO) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    with pipe:
        for chunk in iter(lambda: pipe.read1(65536), b""):
            stream.write(decoder.decode(chunk))
            try:
                stream.flush()
            except (AttributeError, ValueError, OSError):
                pass
        tail = decoder.decode(b"", final=True)
        if tail:
            stream.write(tail)


class DockerDriver(Driver, Configurable):
    """Runs Docker and OCI invocation images through the ``docker`` command."""

    def __init__(self, simulate: bool = False, docker_command: str = "docker") -> None:
        self.simulate = simulate
        self.docker_command = docker_command
        self.settings: dict[str, str] = {}
        self._options: list[ConfigurationOption] = []
        self._container_out: TextIO | None = None
        self._container_err: TextIO | None = None
        self._container_config = ContainerConfig()
        self._host_config = HostConfig()

    def handles(self, image_type: str) -> bool:
        return image_type in (IMAGE_TYPE_DOCKER, IMAGE_TYPE_OCI)

    def add_configuration_options(self, *args: ConfigurationOption) -> None:
        """Register callbacks that customise the container and host configuration."""
        self._options.extend(args)

    def container_config(self) -> ContainerConfig:
        """Return a copy of the container configuration."""
        return copy.deepcopy(self._container_config)

    def container_host_config(self) -> HostConfig:
        """Return a copy of the host configuration."""
        return copy.deepcopy(self._host_config)

    def apply_configuration_options(self) -> None:
        """Run the registered configuration callbacks in order."""
        for option in self._options:
            option(self._container_config, self._host_config)

    def config(self) -> dict[str, str]:
        return {
            SETTING_PULL_ALWAYS: "Always pull image, even if locally available (0|1)",
            SETTING_QUIET: "Make the Docker driver quiet (only print container stdout/stderr)",
            SETTING_CLEANUP_CONTAINERS: (
                "If true, the docker container will be destroyed when it finishes running. "
                "If false, it will not be destroyed. The supported values are true and false. "
                "Defaults to true."
            ),
            SETTING_NETWORK: "Attach the invocation image to the specified docker network",
        }

    def set_config(self, settings: dict[str, str]) -> None:
        """Apply settings, defaulting CLEANUP_CONTAINERS to "true"."""
        value = settings.get(SETTING_CLEANUP_CONTAINERS)
        if value is None:
            settings[SETTING_CLEANUP_CONTAINERS] = "true"
        elif value not in ("true", "false"):
            raise DriverError(
                f"environment variable CLEANUP_CONTAINERS has unexpected value {value!r}. "
                "Supported values are 'true', 'false', or unset"
            )
        self.settings = settings

    def set_container_out(self, stream: TextIO) -> None:
        self._container_out = stream

    def set_container_err(self, stream: TextIO) -> None:
        self._container_err = stream

    @property
    def _quiet(self) -> bool:
        return self.settings.get(SETTING_QUIET) == "1"

    def _docker(self, *args: str, stdin: bytes | None = None) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                [self.docker_command, *args],
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as err:
            raise DriverError(f"unable to run {self.docker_command}: {err}") from err

    @staticmethod
    def _stderr(process: subprocess.CompletedProcess) -> str:
        return process.stderr.decode("utf-8", errors="replace").strip()

    def _pull(self, image_name: str) -> None:
        try:
            process = subprocess.run(
                [self.docker_command, "pull", image_name],
                stdout=subprocess.DEVNULL if self._quiet else None,
                stderr=subprocess.PIPE,
            )
        except OSError as err:
            raise DriverError(f"unable to run {self.docker_command}: {err}") from err
        if process.returncode != 0:
            raise DriverError(f"unable to pull image {image_name}: {self._stderr(process)}")

    def _inspect_image(self, image_name: str) -> dict[str, Any]:
        process = self._docker("image", "inspect", image_name)
        if process.returncode != 0:
            message = self._stderr(process)
            if "no such image" not in message.lower():
                raise DriverError(f"cannot inspect image {image_name}: {message}")
            if not self._quiet:
                print(f"Unable to find image '{image_name}' locally", file=sys.stderr)
            self._pull(image_name)
            process = self._docker("image", "inspect", image_name)
            if process.returncode != 0:
                raise DriverError(f"cannot inspect image {image_name}: {self._stderr(process)}")
        try:
            data = json.loads(process.stdout)
        except ValueError as err:
            raise DriverError(f"cannot inspect image {image_name}: {err}") from err
        if isinstance(data, list):
            data = data[0] if data else {}
        return data or {}

    def _set_configuration_options(self, op: Operation) -> None:
        """Build the default container configuration, then apply user options."""
        self._container_config = ContainerConfig(
            image=op.image.get("image", ""),
            env=[f"{key}={value}" for key, value in op.environment.items()],
            entrypoint=[ENTRYPOINT],
            attach_stderr=True,
            attach_stdout=True,
        )
        self._host_config = HostConfig()
        network = self.settings.get(SETTING_NETWORK)
        if network is not None:
            self._host_config.network_mode = network
        self.apply_configuration_options()

    def _create_arguments(self) -> list[str]:
        """Return the ``docker create`` arguments for the current configuration."""
        cfg, host = self._container_config, self._host_config
        args = ["create"]
        if cfg.user:
            args += ["--user", cfg.user]
        if cfg.working_dir:
            args += ["--workdir", cfg.working_dir]
        for variable in cfg.env:
            args += ["--env", variable]
        for key, value in cfg.labels.items():
            args += ["--label", f"{key}={value}"]
        if cfg.entrypoint:
            args += ["--entrypoint", cfg.entrypoint[0]]
        if host.network_mode:
            args += ["--network", host.network_mode]
        if host.privileged:
            args.append("--privileged")
        for flag, values in (
            ("--cap-add", host.cap_add),
            ("--cap-drop", host.cap_drop),
            ("--volume", host.binds),
            ("--add-host", host.extra_hosts),
            ("--security-opt", host.security_opt),
            ("--dns", host.dns),
        ):
            for value in values:
                args += [flag, value]
        args.append(cfg.image)
        args += cfg.entrypoint[1:]
        args += cfg.cmd
        return args

    def run(self, op: Operation) -> OperationResult:
        if self.simulate:
            return OperationResult()

        image_name = op.image.get("image", "")
        if self.settings.get(SETTING_PULL_ALWAYS) == "1":
            self._pull(image_name)

        inspected = self._inspect_image(image_name)
        try:
            validate_image_digest(op.image, inspected.get("RepoDigests") or [])
        except DriverError as err:
            raise DriverError(f"image digest validation failed: {err}") from err

        self._set_configuration_options(op)

        created = self._docker(*self._create_arguments())
        if created.returncode != 0:
            raise DriverError(f"cannot create container: {self._stderr(created)}")
        container_id = created.stdout.decode("utf-8").strip()

        try:
            return self._run_container(container_id, op, inspected)
        finally:
            if self.settings.get(SETTING_CLEANUP_CONTAINERS) == "true":
                try:
                    self._docker("rm", container_id)
                except DriverError:
                    pass

    def _run_container(
        self, container_id: str, op: Operation, inspected: dict[str, Any]
    ) -> OperationResult:
        uid = get_container_user_id((inspected.get("Config") or {}).get("User") or "")
        try:
            archive = generate_tar(op.files, uid)
        except DriverError as err:
            raise DriverError(f"error staging files: {err}") from err
        copied = self._docker("cp", "-", f"{container_id}:/", stdin=archive)
        if copied.returncode != 0:
            raise DriverError(f"error copying to / in container: {self._stderr(copied)}")

        stdout = self._container_out or op.out or sys.stdout
        stderr = self._container_err or op.err or sys.stderr
        try:
            process = subprocess.Popen(
                [self.docker_command, "start", "--attach", container_id],
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as err:
            raise DriverError(f"cannot start container: {err}") from err
        workers = [
            threading.Thread(target=_pump, args=(process.stdout, stdout), daemon=True),
            threading.Thread(target=_pump, args=(process.stderr, stderr), daemon=True),
        ]
        for worker in workers:
            worker.start()
        start_code = process.wait()
        for worker in workers:
            worker.join()

        waited = self._docker("wait", container_id)
        if waited.returncode != 0:
            partial, fetch_error = self._try_fetch_outputs(container_id, op)
            raise _with_result(
                DriverError(
                    _container_error(f"error in container: {self._stderr(waited)}", fetch_error)
                ),
                partial,
            )
        try:
            status = int(waited.stdout.decode("utf-8").strip())
        except ValueError as err:
            raise DriverError(f"error in container: {err}") from err

        if start_code != 0 and status == 0:
            raise DriverError(f"cannot start container: exit status {start_code}")
        if status == 0:
            return self._fetch_outputs(container_id, op)

        partial, fetch_error = self._try_fetch_outputs(container_id, op)
        raise _with_result(
            DriverError(_container_error(f"container exit code: {status}", fetch_error)),
            partial,
        )

    def _try_fetch_outputs(
        self, container_id: str, op: Operation
    ) -> tuple[OperationResult, DriverError | None]:
        try:
            return self._fetch_outputs(container_id, op), None
        except DriverError as err:
            return getattr(err, "result", OperationResult()), err

    def _fetch_outputs(self, container_id: str, op: Operation) -> OperationResult:
        """Collect the requested outputs from the container's outputs directory."""
        result = OperationResult()
        if not op.outputs:
            return result
        copied = self._docker("cp", f"{container_id}:{OUTPUTS_DIR}", "-")
        if copied.returncode != 0:
            raise _with_result(
                DriverError(f"error copying outputs from container: {self._stderr(copied)}"),
                result,
            )
        try:
            with tarfile.open(fileobj=io.BytesIO(copied.stdout), mode="r:") as archive:
                for member in archive:
                    if member.isdir():
                        continue
                    path = posixpath.normpath(posixpath.join("/cnab", "app", member.name))
                    name = op.outputs.get(path)
                    if name is None:
                        continue
                    handle = archive.extractfile(member)
                    if handle is None:
                        continue
                    result.outputs[name] = handle.read().decode("utf-8", errors="replace")
        except tarfile.TarError as err:
            raise _with_result(
                DriverError(f"error while reading outputs tar: {err}"), result
            ) from err
        return result