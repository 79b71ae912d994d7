import json
from pathlib import Path
import logging
from typing import Optional
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.traceback import install
from rich.table import Table

from . import __version__
from .config import load_config
from .db.session import DB_FILENAME
from .decorators import handle_library_errors

# Initialize Rich Traceback for better error messages
install(show_locals=True)

# Initialize Rich Console
console = Console()

# Configure logging to use Rich's RichHandler
logging.basicConfig(
    level=logging.INFO,  # DEBUG with --verbose
    format="%(message)s",
    datefmt="[%X]",
    handlers=[RichHandler(rich_tracebacks=True)]
)
logger = logging.getLogger(__name__)

# Main app
app = typer.Typer()

# Command groups
user_app = typer.Typer(help="Manage readers")
shelf_app = typer.Typer(help="Manage magic shelves (saved rule filters)")

app.add_typer(user_app, name="user")
app.add_typer(shelf_app, name="shelf")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose mode"),
):
    """
    shelfwise - rule-based book filtering and magic shelves.

    Compile nested rule trees over book, series and reading-progress facts
    into a single SQL query against a SQLite catalog.
    """
    if verbose or load_config().cli.verbose:
        logging.getLogger("shelfwise").setLevel(logging.DEBUG)
        if verbose:
            console.print("[bold green]Verbose mode enabled.[/bold green]")


@app.command()
def about():
    """Display information about shelfwise."""
    console.print(f"[bold cyan]shelfwise {__version__} - Declarative Book Filters[/bold cyan]")
    console.print("")
    console.print("Rule trees (AND/OR groups of field/operator/value rules) over:")
    console.print("  • Book metadata, authors, categories, moods and tags")
    console.print("  • Series status, gaps and position derived from sibling books")
    console.print("  • Per-user read status and resolved reading progress")
    console.print("  • Metadata presence")
    console.print("")
    console.print("[bold]Core Commands:[/bold]")
    console.print("  shelfwise init <lib>                     Initialize new library")
    console.print("  shelfwise filter <rules> <lib> -u <user> Run a rule tree")
    console.print("  shelfwise fields                         List rule fields")
    console.print("  shelfwise stats <lib>                    Show statistics")
    console.print("")
    console.print("[bold]Command Groups:[/bold]")
    console.print("  shelfwise user <subcommand>              Manage readers")
    console.print("  shelfwise shelf <subcommand>             Manage magic shelves")


# ============================================================================
# Helpers
# ============================================================================

def _library_path(library_path: Optional[Path]) -> Path:
    """Argument, else the configured default library."""
    if library_path is None:
        default = load_config().library.default_path
        if not default:
            raise ValueError("No library path given and no default configured "
                             "(set one with 'shelfwise config --library-path')")
        library_path = Path(default).expanduser()
    return Path(library_path)


def _open_library(library_path: Optional[Path]):
    from .library_db import Library

    path = _library_path(library_path)
    if not (path / DB_FILENAME).exists():
        raise FileNotFoundError(f"No library at {path} (run 'shelfwise init {path}')")
    return Library.open(path)


def _acting_user(lib, username: Optional[str]):
    username = username or load_config().rules.default_user
    if not username:
        raise ValueError("No user given and no default user configured")
    user = lib.get_user_by_name(username)
    if not user:
        raise ValueError(f"User '{username}' not found")
    return user


def _read_rules(rules_file: Path) -> dict:
    with open(rules_file) as f:
        if rules_file.suffix.lower() == '.json':
            return json.load(f)
        return yaml.safe_load(f)


def _books_table(books, title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="green")
    table.add_column("Authors", style="blue")
    table.add_column("Series", style="magenta")

    for book in books:
        authors = ", ".join(a.name for a in book.authors[:2])
        if len(book.authors) > 2:
            authors += f" +{len(book.authors) - 2}"

        series = ""
        if book.in_series:
            series = book.series_name
            if book.series_number is not None:
                series += f" #{book.series_number:g}"

        table.add_row(str(book.id), (book.title or "")[:40], authors[:30], series)
    return table


# ============================================================================
# Core Library Commands
# ============================================================================

@app.command()
@handle_library_errors
def init(
    library_path: Path = typer.Argument(..., help="Path to create the library"),
    echo_sql: bool = typer.Option(False, "--echo-sql", help="Echo SQL statements for debugging")
):
    """
    Initialize a new library.

    Example:
        shelfwise init ~/my-library
    """
    from .library_db import Library

    lib = Library.open(library_path, echo=echo_sql)
    lib.close()
    console.print(f"[green]✓ Library initialized at {library_path}[/green]")
    console.print(f"  Database: {library_path / DB_FILENAME}")


@app.command()
@handle_library_errors
def stats(
    library_path: Optional[Path] = typer.Argument(None, help="Path to library")
):
    """Show catalog statistics."""
    lib = _open_library(library_path)
    try:
        counts = lib.stats()
    finally:
        lib.close()

    table = Table(title="Library Statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green", justify="right")
    table.add_row("Total Books", str(counts['total_books']))
    table.add_row("Series", str(counts['total_series']))
    table.add_row("Users", str(counts['total_users']))
    table.add_row("Magic Shelves", str(counts['total_magic_shelves']))
    console.print(table)


@app.command(name="filter")
@handle_library_errors
def filter_books(
    rules_file: Path = typer.Argument(..., help="Rule tree (JSON or YAML)"),
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Acting user"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum number of books to show"),
    offset: int = typer.Option(0, "--offset", help="Starting offset"),
    as_json: bool = typer.Option(False, "--json", help="Print matching book ids as JSON"),
):
    """
    Run a rule tree against the library for a user.

    Examples:
        shelfwise filter rules.yaml ~/my-library --user alice
        shelfwise filter rules.json ~/my-library -u alice --limit 20
    """
    from .db.models import Book

    rules = _read_rules(rules_file)
    config = load_config()
    lib = _open_library(library_path)
    try:
        reader = _acting_user(lib, user)
        query = lib.rule_query(rules, reader.id, week_start=config.rules.week_start)
        total = query.count()
        page_size = limit or config.cli.page_size
        books = query.order_by(Book.title, Book.id).limit(page_size).offset(offset).all()

        if as_json:
            console.print_json(json.dumps({'total': total, 'ids': [b.id for b in books]}))
        elif not books:
            console.print("[yellow]No books match[/yellow]")
        else:
            console.print(_books_table(books, f"Books matching {rules_file.name}"))
            console.print(f"\n[dim]Showing {len(books)} of {total} books (offset: {offset})[/dim]")
    finally:
        lib.close()


@app.command()
def fields():
    """List rule fields with their resolution strategy and value shape."""
    from .rules import FIELD_CATALOG, RuleField

    table = Table(title="Rule Fields")
    table.add_column("Field", style="cyan")
    table.add_column("Kind", style="green")
    table.add_column("Shape", style="magenta")
    for field, spec in FIELD_CATALOG.items():
        if field == RuleField.UNRECOGNIZED:
            continue
        table.add_row(field.value, spec.kind.value, spec.shape.value)
    console.print(table)


@app.command()
@handle_library_errors
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    set_library_path: Optional[str] = typer.Option(None, "--library-path", help="Set default library path"),
    set_default_user: Optional[str] = typer.Option(None, "--default-user", help="Set default acting user"),
    set_week_start: Optional[str] = typer.Option(None, "--week-start", help="First day of the week (monday, sunday)"),
    set_page_size: Optional[int] = typer.Option(None, "--page-size", help="Default number of books to show"),
    set_verbose: Optional[bool] = typer.Option(None, "--cli-verbose/--no-cli-verbose", help="Enable verbose output by default"),
):
    """
    View or edit shelfwise configuration.

    Configuration is stored at ~/.config/shelfwise/config.json (or ~/.shelfwise/config.json).

    Examples:
        shelfwise config --show
        shelfwise config --library-path ~/my-library --default-user alice
    """
    from .config import get_config_path, update_config

    has_settings = any([
        set_library_path, set_default_user, set_week_start, set_page_size,
        set_verbose is not None,
    ])

    if has_settings:
        update_config(
            rules_default_user=set_default_user,
            rules_week_start=set_week_start,
            cli_verbose=set_verbose,
            cli_page_size=set_page_size,
            library_default_path=set_library_path,
        )
        console.print(f"[green]✓ Configuration saved to {get_config_path()}[/green]")
        if not show:
            return

    current = load_config()
    console.print("\n[bold]shelfwise Configuration[/bold]")
    console.print(f"[dim]Location: {get_config_path()}[/dim]\n")

    console.print("[bold cyan]Library Settings:[/bold cyan]")
    console.print(f"  Default Path: {current.library.default_path or '[dim]not set[/dim]'}")

    console.print("\n[bold cyan]Rule Settings:[/bold cyan]")
    console.print(f"  Default User: {current.rules.default_user or '[dim]not set[/dim]'}")
    console.print(f"  Week Start:   {current.rules.week_start}")

    console.print("\n[bold cyan]CLI Settings:[/bold cyan]")
    console.print(f"  Verbose:      {current.cli.verbose}")
    console.print(f"  Page Size:    {current.cli.page_size}")


# ============================================================================
# User Commands
# ============================================================================

@user_app.command(name="add")
@handle_library_errors
def user_add(
    username: str = typer.Argument(..., help="Login name"),
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    name: Optional[str] = typer.Option(None, "--name", help="Display name"),
    admin: bool = typer.Option(False, "--admin", help="Grant admin rights"),
):
    """Add a reader to the library."""
    lib = _open_library(library_path)
    try:
        created = lib.add_user(username, name=name, is_admin=admin)
        console.print(f"[green]✓ Added user '{created.username}' (id {created.id})[/green]")
    finally:
        lib.close()


@user_app.command(name="list")
@handle_library_errors
def user_list(
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
):
    """List readers."""
    lib = _open_library(library_path)
    try:
        users = lib.list_users()
        if not users:
            console.print("[yellow]No users found[/yellow]")
            return

        table = Table(title="Users")
        table.add_column("ID", style="cyan")
        table.add_column("Username", style="green")
        table.add_column("Name", style="blue")
        table.add_column("Admin", style="magenta")
        for u in users:
            table.add_row(str(u.id), u.username, u.name or "", "yes" if u.is_admin else "")
        console.print(table)
    finally:
        lib.close()


# ============================================================================
# Magic Shelf Commands
# ============================================================================

@shelf_app.command(name="create")
@handle_library_errors
def shelf_create(
    name: str = typer.Argument(..., help="Shelf name"),
    rules_file: Path = typer.Argument(..., help="Rule tree (JSON or YAML)"),
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Owner"),
    public: bool = typer.Option(False, "--public", help="Share with all users"),
    icon: Optional[str] = typer.Option(None, "--icon", help="Icon identifier"),
):
    """
    Create a magic shelf from a rule tree file.

    Example:
        shelfwise shelf create "Unread SF" unread-sf.yaml ~/my-library -u alice
    """
    from .shelves import MagicShelfService

    rules = _read_rules(rules_file)
    lib = _open_library(library_path)
    try:
        owner = _acting_user(lib, user)
        shelf = MagicShelfService(lib.session).create(owner.id, name, rules, icon=icon, is_public=public)
        console.print(f"[green]✓ Created shelf '{shelf.name}' (id {shelf.id})[/green]")
    finally:
        lib.close()


@shelf_app.command(name="list")
@handle_library_errors
def shelf_list(
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Viewing user"),
    builtin: bool = typer.Option(True, "--builtin/--no-builtin", help="Include built-in shelves"),
    counts: bool = typer.Option(False, "--counts", help="Evaluate each shelf and show its size"),
):
    """List the shelves a user can see."""
    from .shelves import MagicShelfService

    config = load_config()
    lib = _open_library(library_path)
    try:
        viewer = _acting_user(lib, user)
        service = MagicShelfService(lib.session, week_start=config.rules.week_start)
        shelves = service.list_for_user(viewer.id, include_builtin=builtin)

        table = Table(title=f"Shelves for {viewer.username}")
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Type", style="magenta")
        if counts:
            table.add_column("Books", style="yellow", justify="right")

        for info in shelves:
            if info['builtin']:
                kind = "built-in"
            elif info['owned']:
                kind = "public" if info['public'] else "private"
            else:
                kind = "shared"
            row = [str(info['id'] or ""), info['name'], kind]
            if counts:
                ref = info['name'] if info['builtin'] else info['id']
                row.append(str(service.count(ref, viewer.id)))
            table.add_row(*row)
        console.print(table)
    finally:
        lib.close()


@shelf_app.command(name="books")
@handle_library_errors
def shelf_books(
    shelf: str = typer.Argument(..., help="Shelf id or name"),
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Viewing user"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Maximum number of books to show"),
):
    """Show the books on a shelf, evaluated for the viewing user."""
    from .shelves import MagicShelfService

    config = load_config()
    lib = _open_library(library_path)
    try:
        viewer = _acting_user(lib, user)
        service = MagicShelfService(lib.session, week_start=config.rules.week_start)
        ref = int(shelf) if shelf.isdigit() else shelf
        total = service.count(ref, viewer.id)
        books = service.books(ref, viewer.id, limit=limit or config.cli.page_size)

        if not books:
            console.print("[yellow]Shelf is empty[/yellow]")
        else:
            console.print(_books_table(books, f"Shelf: {shelf}"))
            console.print(f"\n[dim]Showing {len(books)} of {total} books[/dim]")
    finally:
        lib.close()


@shelf_app.command(name="delete")
@handle_library_errors
def shelf_delete(
    shelf: str = typer.Argument(..., help="Shelf id or name"),
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Owner"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete a magic shelf you own."""
    from .shelves import MagicShelfService, is_builtin_shelf

    if is_builtin_shelf(shelf):
        raise ValueError(f"Cannot delete built-in shelf '{shelf}'")

    lib = _open_library(library_path)
    try:
        owner = _acting_user(lib, user)
        service = MagicShelfService(lib.session)
        found = service.resolve(shelf, owner.id)
        if not found:
            raise ValueError(f"Shelf '{shelf}' not found")
        if not yes and not typer.confirm(f"Delete shelf '{found.name}'?"):
            console.print("[red]Operation cancelled[/red]")
            raise typer.Exit(code=0)
        service.delete(found.id, owner.id)
        console.print(f"[green]✓ Deleted shelf '{found.name}'[/green]")
    finally:
        lib.close()


@shelf_app.command(name="export")
@handle_library_errors
def shelf_export(
    shelf: str = typer.Argument(..., help="Shelf id or name"),
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Viewing user"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write YAML to this file"),
):
    """Export a shelf definition as YAML."""
    from .shelves import MagicShelfService

    lib = _open_library(library_path)
    try:
        viewer = _acting_user(lib, user)
        service = MagicShelfService(lib.session)
        ref = int(shelf) if shelf.isdigit() else shelf
        if output:
            service.export_file(ref, viewer.id, output)
            console.print(f"[green]✓ Exported shelf to {output}[/green]")
        else:
            console.print(service.export_yaml(ref, viewer.id), markup=False)
    finally:
        lib.close()


@shelf_app.command(name="import")
@handle_library_errors
def shelf_import(
    yaml_file: Path = typer.Argument(..., help="Shelf YAML file"),
    library_path: Optional[Path] = typer.Argument(None, help="Path to library"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="New owner"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace a shelf with the same name"),
):
    """Import a shelf definition from YAML."""
    from .shelves import MagicShelfService

    lib = _open_library(library_path)
    try:
        owner = _acting_user(lib, user)
        shelf = MagicShelfService(lib.session).import_file(yaml_file, owner.id, overwrite=overwrite)
        console.print(f"[green]✓ Imported shelf '{shelf.name}' (id {shelf.id})[/green]")
    finally:
        lib.close()


if __name__ == "__main__":
    app()
