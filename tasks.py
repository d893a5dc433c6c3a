"""Invoke tasks for the piecefetch project."""

from invoke import Context, task

SOURCES = "src/ tests/ tasks.py"


@task
def lint(ctx: Context, fix: bool = False) -> None:
    """Run ruff linter, optionally applying safe fixes."""
    fix_flag = "--fix" if fix else ""
    ctx.run(f"uv run ruff check {fix_flag} {SOURCES}", pty=True)


@task
def format(ctx: Context, check: bool = False) -> None:
    """Format sources with ruff, or only report what would change."""
    check_flag = "--check" if check else ""
    ctx.run(f"uv run ruff format {check_flag} {SOURCES}", pty=True)


@task
def test(ctx: Context, match: str = "", verbose: bool = False) -> None:
    """Run the pytest suite; ``--match`` selects tests by keyword."""
    match_flag = f"-k '{match}'" if match else ""
    verbose_flag = "-v" if verbose else ""
    ctx.run(f"uv run pytest tests/ {match_flag} {verbose_flag}", pty=True)


@task(pre=[lint])
def check(ctx: Context) -> None:
    """Lint, check formatting and run the tests."""
    format(ctx, check=True)
    test(ctx)


@task
def mcp(ctx: Context) -> None:
    """Serve the piecefetch MCP tools over stdio."""
    ctx.run("uv run piecefetch-mcp", pty=True)
