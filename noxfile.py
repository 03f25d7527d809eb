"""Nox configuration for Retail Forecaster development automation.

This file defines automated development tasks including linting, testing,
formatting and a local API server.
"""

import nox

# Python versions to test against
PYTHON_VERSIONS = ["3.11"]

# Default sessions to run when no specific session is requested
nox.options.sessions = ["lint", "test", "coverage"]


def _install(session):
    session.install("poetry")
    session.run("poetry", "install", "--all-extras")


@nox.session(python=PYTHON_VERSIONS)
def lint(session):
    """Run linting with ruff and mypy."""
    _install(session)

    session.run("poetry", "run", "ruff", "check", "src", "tests")
    session.run("poetry", "run", "mypy", "src")

    session.log("✅ Linting completed successfully")


@nox.session(python=PYTHON_VERSIONS)
def format_code(session):
    """Format code with black and isort."""
    _install(session)

    session.run("poetry", "run", "black", "src", "tests")
    session.run("poetry", "run", "isort", "src", "tests")
    session.run("poetry", "run", "ruff", "check", "--fix", "src", "tests")

    session.log("✅ Code formatting completed")


@nox.session(python=PYTHON_VERSIONS)
def test(session):
    """Run the test suite with pytest."""
    _install(session)

    session.run(
        "poetry", "run", "pytest",
        "tests/",
        "-v",
        "--tb=short",
        "-m", "not slow",
        *session.posargs,
    )

    session.log("✅ Unit tests completed successfully")


@nox.session(python=PYTHON_VERSIONS)
def coverage(session):
    """Run tests with coverage reporting."""
    _install(session)

    session.run(
        "poetry", "run", "pytest",
        "tests/",
        "--cov=retail_forecaster",
        "--cov-report=term-missing",
        "--cov-report=xml:coverage.xml",
        "--cov-fail-under=80",
        "-m", "not slow",
    )

    session.log("✅ Coverage analysis completed")


@nox.session(python=PYTHON_VERSIONS)
def serve(session):
    """Run the API server locally.

    Usage examples:
      nox -s serve
      nox -s serve -- --config-path config/dev.yml --port 8080
    """
    _install(session)
    session.run("poetry", "run", "retail-forecaster", "serve", *session.posargs)


@nox.session(python=PYTHON_VERSIONS)
def security(session):
    """Run security checks with bandit."""
    _install(session)
    session.install("bandit")
    session.run("bandit", "-r", "src", "-q")

    session.log("✅ Security checks completed")


@nox.session(python=False)
def clean(session):
    """Clean up build artifacts and cache files."""
    import os
    import shutil

    clean_paths = [
        ".pytest_cache",
        ".coverage",
        "htmlcov",
        "coverage.xml",
        "dist",
        ".ruff_cache",
        ".mypy_cache",
    ]

    for path in clean_paths:
        if os.path.isdir(path):
            shutil.rmtree(path)
            session.log(f"🗑️  Removed directory: {path}")
        elif os.path.exists(path):
            os.remove(path)
            session.log(f"🗑️  Removed file: {path}")

    session.log("✅ Cleanup completed")
