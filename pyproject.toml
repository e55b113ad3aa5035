[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "splai-worker"
version = "0.1.0"
description = "Worker agent that polls a control plane for tasks, executes them and reports results."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "worker",
    "distributed",
    "task-runner",
    "llm",
    "embedding",
    "retrieval",
    "agent",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
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
splai-worker = "splai_worker.agent:main"

[tool.hatch.build.targets.wheel]
packages = ["splai_worker"]

[tool.hatch.build.targets.sdist]
include = ["splai_worker", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
