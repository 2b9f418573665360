"""Development tasks using invoke."""

import sys
from pathlib import Path

from invoke import task


@task
def install(c):
    """Install the package in development mode."""
    print("📚 Installing dependencies...")
    c.run("pip install -e '.[dev]'")


@task
def test(c, verbose=False, e2e=True):
    """Run tests with pytest; pass --no-e2e to skip subprocess tests."""
    cmd = "pytest"
    if verbose:
        cmd += " -v"
    if not e2e:
        cmd += " -m 'not e2e'"
    print("🧪 Running tests...")
    c.run(cmd)


@task
def test_cov(c):
    """Run tests with coverage reporting."""
    print("🧪 Running tests with coverage...")
    c.run("pytest --cov=src/msrp_harness --cov-report=html --cov-report=term")


@task
def lint(c):
    """Run linting tools."""
    print("🔍 Running linters...")
    c.run("flake8 src/ tests/")
    c.run("mypy src/")


@task
def format_code(c):
    """Format code with black and isort."""
    print("🎨 Formatting code...")
    c.run("black src/ tests/")
    c.run("isort src/ tests/")


@task
def clean(c):
    """Clean up build artifacts, cache files and harness output."""
    print("🧹 Cleaning up...")
    c.run("rm -rf build/ dist/ *.egg-info/ .pytest_cache/ .coverage htmlcov/ harness_output/ logs/")
    c.run("find . -type d -name __pycache__ -exec rm -rf {} +", warn=True)
    c.run("find . -type f -name '*.pyc' -delete", warn=True)


@task
def scenario(c, name="negotiation", sessions=5, output="./harness_output", log_level="info"):
    """Run one harness scenario against freshly spawned endpoints."""
    print(f"🚀 Running scenario {name}...")
    c.run(f"msrp-harness run --scenario {name} --sessions {sessions} --output {output} --log-level {log_level}")


@task
def setup(c):
    """Set up the development environment."""
    print("🚀 Setting up msrp-harness development environment...")

    if sys.version_info < (3, 9):
        print("❌ Python 3.9 or higher is required")
        return

    venv_path = Path("venv")
    if not venv_path.exists():
        print("📦 Creating virtual environment...")
        c.run("python -m venv venv")

    if sys.platform == "win32":
        activate_cmd = "venv\\Scripts\\activate && "
    else:
        activate_cmd = "source venv/bin/activate && "

    c.run(f"{activate_cmd}pip install --upgrade pip")
    c.run(f"{activate_cmd}pip install -e '.[dev]'")
    c.run(f"{activate_cmd}pytest tests/ -m 'not e2e'")

    print("\n🎉 Setup complete!")
    print("\nCommon commands:")
    print("  inv test              - Run tests")
    print("  inv test --no-e2e     - Skip subprocess tests")
    print("  inv scenario          - Run the negotiation scenario")
    print("  inv format-code       - Format code")
    print("  inv lint              - Run linters")
