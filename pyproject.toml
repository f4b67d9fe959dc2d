[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "jivaop"
version = "0.1.0"
description = "Jiva volume resources, policy defaults, manifests, reconciliation, and node-side mount, stats and resize helpers"
requires-python = ">=3.10"
dependencies = []
keywords = ["jiva", "iscsi", "storage", "volume", "operator", "kubernetes", "mount"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Filesystems",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["jivaop"]

[tool.hatch.build.targets.sdist]
include = ["jivaop", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
