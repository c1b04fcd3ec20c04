[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "memex"
version = "0.1.0"
description = "Shard bookkeeping, a hash-chained audit log, a markdown corpus driver and an operator CLI for a memex retrieval service"
requires-python = ">=3.10"
keywords = [
    "retrieval",
    "search",
    "shards",
    "audit-log",
    "hash-chain",
    "markdown",
    "frontmatter",
    "ingestion",
    "smoke-test",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Indexing/Search",
    "Topic :: System :: Logging",
]
dependencies = [
    "httpx>=0.25",
    "pyyaml>=6.0",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "pytest-asyncio>=0.23",
    "httpx>=0.25",
]

[project.scripts]
memex-cli = "memex.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["memex"]

[tool.hatch.build.targets.sdist]
include = ["memex", "tests", "pyproject.toml", "README.md"]

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
