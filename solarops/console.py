"""
Human-readable terminal output.
"""

import click

RULE = "=" * 32

# With --json, stdout is reserved for the result document
_to_stderr = False


def use_stderr(flag: bool) -> None:
    global _to_stderr
    _to_stderr = flag


def _echo(text: str, err: bool = False) -> None:
    click.echo(text, err=err or _to_stderr)


def message(text: str) -> None:
    _echo(f"{click.style('[INFO]', fg='green')} {text}")


def warning(text: str) -> None:
    _echo(f"{click.style('[WARNING]', fg='yellow')} {text}")


def error(text: str) -> None:
    _echo(f"{click.style('[ERROR]', fg='red')} {text}", err=True)


def header(text: str) -> None:
    _echo(click.style(RULE, fg='blue'))
    _echo(click.style(text, fg='blue'))
    _echo(click.style(RULE, fg='blue'))


def bullet(text: str) -> None:
    _echo(f"   • {text}")


def line(text: str = "") -> None:
    """Raw passthrough, used for external command output."""
    _echo(text)
