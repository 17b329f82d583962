[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "pouchstore"
version = "0.1.0"
description = "Local storage primitives for a peer-to-peer social storage network: offers, agreements, manifests, fragment index and chunk encryption."
requires-python = ">=3.10"
dependencies = [
    "cryptography",
]
keywords = [
    "storage",
    "peer-to-peer",
    "distributed-filesystem",
    "encryption",
    "chacha20-poly1305",
    "blake3",
    "manifest",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
    "Topic :: Security :: Cryptography",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["pouchstore"]

[tool.hatch.build.targets.sdist]
include = [
    "pouchstore",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
