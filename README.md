# cnabrun

A library for recording and running operations on CNAB bundles. It covers
claims, results, outputs, installations, credential sets and drivers that run
an operation's invocation image.

Bundles are plain dictionaries in their JSON form. Keys such as `actions`,
`outputs`, `definitions` and `credentials` are read where they are needed.

## Installation

```
pip install cnabrun
```

## Claims and results

```python
from cnabrun.claim import new_claim, is_valid_name

bundle = {"name": "mybun", "actions": {"logs": {"modifies": False}}}

claim = new_claim("my-app", "install", bundle, {"port": 8080})
claim.validate()                  # raises ClaimError when incomplete
print(claim.to_json())

result = claim.new_result("running")
result.validate()                 # raises ResultError on a bad status
```

- `new_claim` checks the installation name against `[a-zA-Z0-9._-]+`. The same
  check is available as `is_valid_name`. It also sets a fresh ULID id and
  revision and the current time.
- `Claim.new_claim(action, bundle, parameters)` makes a follow-up claim with a
  new id. The revision changes only when the action modifies the installation:
  install, upgrade, uninstall, or a custom action with `"modifies": true`.
- `Claim.load_results(results)` attaches results to a claim. After that,
  `get_last_result()`, `get_status()` and `has_logs()` work on them.
  `has_logs()` returns `None` when no results are loaded.
- `Result.output_metadata` is an `OutputMetadata` dictionary. It has helpers
  for the content digest and the generated-by-bundle flag.
- `Result.to_dict()` and `Result.from_dict()` convert a result to and from its
  JSON document form.

ULIDs come from `cnabrun.ulid`:

- `new_ulid()` uses one shared, thread-safe and monotonic generator.
- `is_valid_ulid()` checks a ULID string.
- `UlidGenerator(entropy)` accepts your own entropy stream.

## Outputs and installations

```python
from cnabrun.output import Outputs, new_output
from cnabrun.installation import Installation, sort_by_name, sort_by_modified

output = new_output(claim, result, "connstr", b"...")
output.definition()   # the bundle's output entry, or None
output.schema()       # the matching definition, or None

outputs = Outputs([output])
outputs.get_by_name("connstr")

installation = Installation("my-app", claims)   # claims sorted by id
installation.last_status()
installation.installation_timestamp()
```

`sort_by_name` orders installations by name. `sort_by_modified` orders them by
their most recent claim.

## Credential sets

```python
from cnabrun.credentials import load, validate, new_credential_set, CredentialStrategy

credset = load("staging.yaml")
values = credset.resolve_credentials(store)   # store has resolve(key, value)
validate(values, bundle["credentials"], "install")
```

`validate` raises `CredentialError` when a credential is missing, required and
applicable to the action. The package does not provide a secret store. Any
object with a `resolve(key, value)` method will do.

## Drivers

```python
from cnabrun.driver import Operation
from cnabrun.lookup import lookup

op = Operation(installation="my-app", action="install",
               image={"image": "example.com/app:v1"}, bundle=bundle)
driver = lookup("debug")
result = driver.run(op)
print(result.outputs)
```

`lookup(name)` returns one of these drivers:

- `"docker"`: a `DockerDriver`.
- `"debug"`: a `DebugDriver`. It prints the operation as JSON and never runs
  anything.
- any other name: a `CommandDriver` for an executable named `cnab-NAME` on
  PATH. If none is found, `lookup` raises `DriverError`.

### Command driver

`CommandDriver(name, path)` runs the executable, either the given path or
`cnab-NAME` from PATH:

- The operation is written as JSON on its stdin.
- The operation's environment is added to the process environment.
- `CNAB_VARS` lists the added variable names.
- When outputs are requested, `CNAB_OUTPUT_DIR` names a temporary directory.
  Output files are read back from that directory.
- `handles()` runs the executable with `--handles` and reads a comma-separated
  list of image types.

### Docker driver

`DockerDriver` runs the image through the `docker` command-line client. It:

- inspects the image, pulling it if needed;
- checks the image's `contentDigest` against its repo digests;
- creates the container with entrypoint `/cnab/app/run`;
- copies the operation's files in;
- streams the container's output;
- collects outputs from `/cnab/app/outputs`.

Settings for `set_config`:

| Setting | Meaning |
| --- | --- |
| `PULL_ALWAYS` | `1` to always pull the image |
| `DOCKER_DRIVER_QUIET` | `1` to silence the driver's own messages |
| `CLEANUP_CONTAINERS` | `true` (default) or `false` |
| `DOCKER_NETWORK` | network to attach the container to |

Callbacks added with `add_configuration_options` can adjust the
`ContainerConfig` and `HostConfig` before the container is created.

`cnabrun.docker_client.build_docker_client_options()` reads `DOCKER_CONFIG`,
`DOCKER_TLS_VERIFY` and `DOCKER_CERT_PATH` into a `ClientOptions`.

## Errors

Failures raise exceptions:

- `ClaimError` for claims and installations;
- `ResultError` for results;
- `CredentialError` for credentials;
- `DriverError` for drivers. When the Docker driver fails after the container
  has run, the error's `result` attribute holds any outputs collected.

## What it does not do

- There is no Kubernetes driver.
- There is no persistent storage for claims, results or outputs.
- There are no secret store implementations.
- There is no JSON-schema validation of documents.
- There is no command-line program. This is a library only.

## Running the tests

```
pip install -e .[test]
pytest
```