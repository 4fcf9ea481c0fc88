[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "micrort"
version = "0.1.0"
description = "Microservice runtime toolkit: service command line and shell, chatops bot, request stats, RPC over HTTP, API tokens and update notifications"
requires-python = ">=3.10"
keywords = ["microservices", "rpc", "registry", "chatops", "cli", "wsgi", "branca"]
classifiers = [
    "Development Status :: 4 - Beta",
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
    "Topic :: System :: Distributed Computing",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Middleware",
]
dependencies = [
    "requests",
    "pynacl",
]

[project.optional-dependencies]
test = [
    "pytest",
    "responses",
]

[project.scripts]
micrort = "micrort.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["micrort"]

[tool.hatch.build.targets.sdist]
include = ["micrort", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
