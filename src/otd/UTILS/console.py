"""
Operator-facing status lines, colored the way the demo scripts print them.
"""
import click


def print_status(message: str):
    click.echo(click.style("[INFO]", fg="blue") + f" {message}")


def print_success(message: str):
    click.echo(click.style("[SUCCESS]", fg="green") + f" {message}")


def print_warning(message: str):
    click.echo(click.style("[WARNING]", fg="yellow", bold=True) + f" {message}")


def print_error(message: str):
    click.echo(click.style("[ERROR]", fg="red") + f" {message}", err=True)
