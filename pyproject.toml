[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cnabrun"
version = "0.1.0"
description = "Claims, credential sets and invocation-image drivers for running CNAB bundles"
requires-python = ">=3.10"
keywords = ["cnab", "bundle", "claim", "driver", "docker", "credentials", "ulid"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]
dependencies = [
    "pyyaml",
    "semver",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["cnabrun"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
