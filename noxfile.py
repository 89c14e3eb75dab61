"""Nox sessions for testing across multiple Python versions."""

import nox

# Set the default venv backend to uv
nox.options.default_venv_backend = "uv"
# Python versions to test
PYTHON_VERSIONS = ["3.10", "3.11", "3.12", "3.13"]
DEFAULT_PYTHON_VERSION = "3.12"

# Nox options
nox.options.reuse_existing_virtualenvs = True
nox.options.sessions = ["tests"]


@nox.session(python=PYTHON_VERSIONS)
def tests(session: nox.Session) -> None:
    """Run tests with pytest across multiple Python versions."""
    session.install(".[test]")

    session.run("pytest", "tests/", "-v", *session.posargs)


@nox.session(python=DEFAULT_PYTHON_VERSION)
def coverage(session: nox.Session) -> None:
    """Run tests with coverage report."""
    session.install(".[test]")

    session.run(
        "pytest",
        "tests/",
        "--cov=src/calmeval",
        "--cov-report=html",
        "--cov-report=term",
        "-v",
    )


@nox.session(python=DEFAULT_PYTHON_VERSION)
def lint(session: nox.Session) -> None:
    """Run linters (Ruff and Black)."""
    session.install("ruff", "black")

    session.run("ruff", "check", "src/", "tests/", "examples/")
    session.run("black", "--check", "src/", "tests/", "examples/")


@nox.session(python=DEFAULT_PYTHON_VERSION)
def type_check(session: nox.Session) -> None:
    """Run type checking with mypy."""
    session.install("mypy")
    session.install(".")

    session.run("mypy", "src/")


@nox.session(python=DEFAULT_PYTHON_VERSION)
def format(session: nox.Session) -> None:
    """Format code with Black and Ruff."""
    session.install("ruff", "black")

    session.run("ruff", "check", "--fix", "src/", "tests/", "examples/")
    session.run("black", "src/", "tests/", "examples/")
