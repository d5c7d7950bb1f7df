"""Docker client options derived from the user's Docker environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DOCKER_TLS_VERIFY_ENV_VAR = "DOCKER_TLS_VERIFY"
DOCKER_CERT_PATH_ENV_VAR = "DOCKER_CERT_PATH"
DOCKER_CONFIG_ENV_VAR = "DOCKER_CONFIG"

DEFAULT_CA_FILE = "ca.pem"
DEFAULT_CERT_FILE = "cert.pem"
DEFAULT_KEY_FILE = "key.pem"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})


@dataclass(frozen=True)
class TLSOptions:
    """Locations of the TLS files used to talk to the Docker daemon."""

    ca_file: str
    cert_file: str
    key_file: str


@dataclass
class ClientOptions:
    """Options for creating a Docker client."""

    config_dir: str
    tls: bool = False
    tls_verify: bool = False
    tls_options: TLSOptions | None = None


def docker_config_dir() -> str:
    """Return the Docker configuration directory: $DOCKER_CONFIG or ~/.docker."""
    configured = os.environ.get(DOCKER_CONFIG_ENV_VAR)
    if configured:
        return configured
    return str(Path.home() / ".docker")


def build_docker_client_options() -> ClientOptions:
    """Build client options honouring DOCKER_TLS_VERIFY and DOCKER_CERT_PATH.

    TLS is enabled whenever DOCKER_TLS_VERIFY is set to a non-empty value;
    certificates are verified only when that value parses as true.
    """
    options = ClientOptions(config_dir=docker_config_dir())

    tls_verify = os.environ.get(DOCKER_TLS_VERIFY_ENV_VAR)
    if tls_verify:
        options.tls = True
        options.tls_verify = tls_verify in _TRUE_WORDS
        cert_path = os.environ.get(DOCKER_CERT_PATH_ENV_VAR) or options.config_dir
        options.tls_options = TLSOptions(
            ca_file=os.path.join(cert_path, DEFAULT_CA_FILE),
            cert_file=os.path.join(cert_path, DEFAULT_CERT_FILE),
            key_file=os.path.join(cert_path, DEFAULT_KEY_FILE),
        )

    return options