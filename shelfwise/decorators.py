"""Decorators for shelfwise CLI commands."""

import functools
import logging
from typing import Callable, Any
import typer
from rich.console import Console

from .rules import RuleValidationError

logger = logging.getLogger(__name__)
console = Console()


def handle_library_errors(func: Callable) -> Callable:
    """
    Decorator to turn library and rule errors into CLI messages.

    Maps:
    - RuleValidationError: malformed rule tree
    - FileNotFoundError: library or rules file missing
    - PermissionError: shelf owned by another user
    - ValueError: invalid data or arguments
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except RuleValidationError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid rule tree: {e}")
            raise typer.Exit(code=2)
        except FileNotFoundError as e:
            console.print(f"[bold red]Error:[/bold red] Library or file not found: {e}")
            raise typer.Exit(code=1)
        except PermissionError as e:
            console.print(f"[bold red]Error:[/bold red] Permission denied: {e}")
            raise typer.Exit(code=1)
        except ValueError as e:
            console.print(f"[bold red]Error:[/bold red] Invalid input: {e}")
            raise typer.Exit(code=1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(code=130)
        except Exception as e:
            logger.error(f"Unexpected error in {func.__name__}: {e}", exc_info=True)
            console.print(f"[bold red]Unexpected error:[/bold red] {e}")
            raise typer.Exit(code=1)

    return wrapper
