[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "intellilb"
version = "0.1.0"
description = "Building blocks for a priority-aware HTTP load balancer: configuration, selection algorithms, circuit breakers, health monitoring, entrypoints, plus a demo backend and traffic generators"
requires-python = ">=3.10"
dependencies = [
    "requests",
    "watchdog",
]
keywords = [
    "load-balancer",
    "circuit-breaker",
    "health-check",
    "canary",
    "round-robin",
    "least-connections",
    "load-testing",
    "chaos",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Testing :: Traffic Generation",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
intellilb-backend = "intellilb.backend:main"
intellilb-loadtest = "intellilb.loadtest:main"
intellilb-chaos = "intellilb.chaos:main"
intellilb-dynamic-load = "intellilb.dynamic:main"
intellilb-failure-test = "intellilb.failuretest:main"

[tool.hatch.build.targets.wheel]
packages = ["intellilb"]

[tool.hatch.build.targets.sdist]
include = [
    "intellilb",
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
warn_unused_ignores = true
warn_redundant_casts = true
