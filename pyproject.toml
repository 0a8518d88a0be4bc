[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "distlab"
version = "0.1.0"
description = "Simulated RPC network, key/value services and a small MapReduce framework for distributed-systems experiments"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "distributed-systems",
    "rpc",
    "mapreduce",
    "key-value",
    "linearizability",
    "simulation",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
distlab-mrcoordinator = "distlab.mr_coordinator:main"
distlab-mrsequential = "distlab.mr_sequential:main"
distlab-mrworker = "distlab.mr_sequential:worker_main"

[tool.hatch.build.targets.wheel]
packages = ["distlab"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
