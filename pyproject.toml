[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "reachcheck"
version = "0.1.0"
description = "Building blocks for e-mail reachability checks: verdicts, MX lookups, misc checks, an HTTP API, bulk jobs and a queue worker."
requires-python = ">=3.10"
keywords = [
    "email",
    "verification",
    "mx",
    "deliverability",
    "disposable",
    "gravatar",
    "bulk",
    "amqp",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: AsyncIO",
    "Framework :: aiohttp",
    "Topic :: Communications :: Email",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "aiohttp",
    "httpx",
    "dnspython",
    "pika",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
    "respx",
]

[project.scripts]
reachcheck-prune = "reachcheck.store:prune_main"

[tool.hatch.build.targets.wheel]
packages = ["reachcheck"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
