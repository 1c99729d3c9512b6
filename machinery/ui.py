"""Operator-facing console output.

All text meant for the operator goes through a ``Ui`` instance created once
per invocation. Verbosity and hints are properties of that instance, so
the inspection engine and the error classifier receive them explicitly.
"""

from __future__ import annotations

from contextlib import contextmanager, nullcontext
from typing import Iterator

from rich.console import Console
from rich.markup import escape


class Ui:
    """Wrapper around a stdout and a stderr rich console."""

    def __init__(
        self,
        *,
        verbose: bool = False,
        hints: bool = True,
        use_pager: bool = True,
        out: Console | None = None,
        err: Console | None = None,
    ):
        self.verbose = verbose
        self.hints = hints
        self.use_pager = use_pager
        self.out = out or Console(soft_wrap=True, highlight=False)
        self.err = err or Console(stderr=True, soft_wrap=True, highlight=False)

    def puts(self, text: str = "") -> None:
        """Print plain text to stdout without interpreting markup."""
        self.out.print(text, markup=False, highlight=False)

    def print(self, *renderables, **kwargs) -> None:
        self.out.print(*renderables, **kwargs)

    def warn(self, message: str) -> None:
        self.err.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.err.print(message, markup=False, highlight=False)

    def note(self, message: str) -> None:
        self.out.print(f"\n[bold]Note:[/bold] {escape(message)}\n")

    def hint(self, message: str) -> None:
        if self.hints:
            self.out.print(f"[dim]Hint: {escape(message)}[/dim]")

    def success(self, message: str) -> None:
        self.out.print(f"[green]{escape(message)}[/green]")

    @contextmanager
    def pager(self) -> Iterator[None]:
        """Page stdout output when paging is enabled and stdout is a terminal."""
        if self.use_pager and self.out.is_terminal:
            with self.out.pager(styles=True):
                yield
        else:
            with nullcontext():
                yield
