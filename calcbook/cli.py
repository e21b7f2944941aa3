"""
CLI interface for calcbook with Rich TUI.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from calcbook import NotebookApp, CalcbookError
from calcbook.formats import Representation
from calcbook.persistence import FileStorage, MemoryStorage, PersistenceAdapter


console = Console()


HELP_SECTIONS = [
    ("Cells", [
        ("Enter", "Edit current cell"),
        ("a", "Add cell at the end"),
        ("d", "Delete current cell"),
        ("f", "Choose output format"),
    ]),
    ("Navigation", [
        ("j / down", "Next cell"),
        ("k / up", "Previous cell"),
        ("g", "First cell"),
        ("G", "Last cell"),
    ]),
    ("Inspect", [
        ("?", "Show variables"),
    ]),
    ("General", [
        ("h", "Toggle help"),
        ("q", "Quit"),
    ]),
]

EXAMPLES = [
    ("x = 5", "Assign a name"),
    ("x * 2", "Use it in a later cell"),
    ("sqrt(2) * pi", "math functions and constants"),
    ("r = 3\npi * r ** 2", "Several statements, last one is shown"),
]


def render_representation(rep: Optional[Representation]) -> Text:
    if rep is None:
        return Text("")
    return Text(rep.value, style="cyan")


class NotebookEditor:
    """Interactive notebook editor with Rich TUI."""

    def __init__(self, app: NotebookApp):
        self.app = app
        self.current_cell_index = 0
        self.running = True
        self._status_message = ""

    def _set_message(self, message: str):
        """Set a status message to display on next render."""
        self._status_message = message

    @property
    def cells(self):
        return self.app.state.cells

    def display_header(self):
        """Display the header with session info."""
        parts = ["[bold white]calcbook[/bold white]"]

        cell_count = len(self.cells)
        parts.append(f"[dim]Cell {self.current_cell_index + 1}/{cell_count}[/dim]")

        evaluated = sum(1 for c in self.cells if c.has_result())
        if evaluated:
            parts.append(f"[dim]{evaluated} evaluated[/dim]")

        errors = sum(1 for c in self.cells if c.error)
        if errors:
            parts.append(f"[red]{errors} error(s)[/red]")

        if self.app.state.session_restored:
            parts.append("[dim]restored[/dim]")

        console.print(Panel(
            "  |  ".join(parts),
            border_style="blue",
            padding=(0, 1),
        ))

    def display_help(self):
        """Help panel shown while help is toggled on."""
        for section_name, bindings in HELP_SECTIONS:
            table = Table(
                show_header=False,
                box=None,
                padding=(0, 2),
                title=f"[bold]{section_name}[/bold]",
                title_justify="left",
            )
            table.add_column("Key", style="bold cyan", no_wrap=True, min_width=12)
            table.add_column("Action")
            for key, action in bindings:
                table.add_row(key, action)
            console.print(table)

        examples = Table(title="[bold]Examples[/bold]", title_justify="left", box=None)
        examples.add_column("Code", style="green")
        examples.add_column("")
        for code, description in EXAMPLES:
            examples.add_row(code, description)
        console.print(examples)
        console.print("[dim]Tip: changing a cell refreshes only the cells that use it.[/dim]")

    def display_cells(self):
        """Display all cells with current cell highlighted."""
        console.clear()
        self.display_header()

        if self._status_message:
            console.print(f"  {self._status_message}")
            self._status_message = ""

        console.print()
        for i, cell in enumerate(self.cells):
            is_current = i == self.current_cell_index
            cursor = " > " if is_current else "   "

            if is_current:
                border_style = "bright_green"
            elif cell.error:
                border_style = "red"
            else:
                border_style = "dim"

            if cell.code.strip():
                content = Syntax(cell.code, "python", theme="monokai", word_wrap=True)
            else:
                content = Text("(empty)", style="dim italic")

            console.print(Panel(
                content,
                title=f"[{border_style}]{cursor}[{i}][/{border_style}]",
                title_align="left",
                subtitle=f"[dim]{cell.time}[/dim]" if cell.time else None,
                subtitle_align="right",
                border_style=border_style,
                padding=(0, 1),
            ))

            if cell.error:
                console.print(Panel(
                    Text(cell.error, style="red"),
                    title="[red]Error[/red]",
                    title_align="left",
                    border_style="red",
                    padding=(0, 1),
                ))
            elif cell.output:
                selector = self.app.selector(i)
                active = selector.active
                console.print(Panel(
                    render_representation(active),
                    title=f"[blue]{active.label() if active else ''}[/blue]",
                    title_align="left",
                    border_style="blue",
                    padding=(0, 1),
                ))

        if self.app.state.help_open:
            console.print()
            self.display_help()

    def display_command_bar(self):
        """Display compact command bar at bottom."""
        console.print()
        console.print(Rule(style="dim"))

        commands = [
            ("Enter", "Edit"),
            ("a", "Add"),
            ("d", "Del"),
            ("f", "Format"),
            ("j/k", "Nav"),
            ("?", "Vars"),
            ("h", "Help"),
            ("q", "Quit"),
        ]

        bar = Text()
        for i, (key, action) in enumerate(commands):
            if i > 0:
                bar.append("  ", style="dim")
            bar.append(key, style="bold cyan")
            bar.append(f":{action}", style="dim")

        console.print(bar, justify="center")
        console.print(Rule(style="dim"))

    def offer_restore(self):
        """Ask once whether to bring back the previous session."""
        if not self.app.restore_offered():
            return
        count = len(self.app.state.previous_session)
        console.print(Panel(
            f"You have a previous session with {count} cell(s) saved since last time.",
            title="[bold green]Welcome back![/bold green]",
            border_style="green",
        ))
        try:
            accepted = Confirm.ask("Restore session?", default=True)
        except (KeyboardInterrupt, EOFError):
            accepted = False

        if accepted:
            self.app.restore_session()
            self.current_cell_index = 0
            self._set_message(f"[green]Restored {count} cell(s)[/green]")
        else:
            self.app.dismiss_restore()

    def edit_current_cell(self):
        """Read new source for the current cell and write it."""
        cell = self.cells[self.current_cell_index]

        console.print()
        console.print(f"[bold]Editing cell {self.current_cell_index}[/bold]")
        if cell.code.strip():
            console.print(Syntax(cell.code, "python", theme="monokai", line_numbers=True))
            console.print()

        console.print("[dim]Enter new content (empty line to finish, 'cancel' to abort):[/dim]")

        lines = []
        line_num = 1
        while True:
            try:
                line = console.input(f"[green]{line_num:>3}[/green] | ")
            except (KeyboardInterrupt, EOFError):
                self._set_message("[yellow]Edit cancelled[/yellow]")
                return
            if line.strip() == "cancel":
                self._set_message("[yellow]Edit cancelled[/yellow]")
                return
            if line == "":
                break
            lines.append(line)
            line_num += 1

        new_source = "\n".join(lines)
        if new_source == cell.code:
            self._set_message("[dim]No changes[/dim]")
            return

        affected = self.app.write(self.current_cell_index, new_source)
        others = [i for i in affected if i != self.current_cell_index]
        if others:
            self._set_message(
                f"[green]Cell {self.current_cell_index} updated[/green] "
                f"[dim](refreshed {', '.join(map(str, others))})[/dim]"
            )
        else:
            self._set_message(f"[green]Cell {self.current_cell_index} updated[/green]")

    def add_cell(self):
        """Append a cell and move to it."""
        self.current_cell_index = self.app.insert()
        self._set_message(f"[green]Added cell {self.current_cell_index}[/green]")

    def delete_current_cell(self):
        """Delete the current cell."""
        if not self.cells:
            self._set_message("[yellow]No cells to delete[/yellow]")
            return

        if Confirm.ask(f"Delete cell {self.current_cell_index}?"):
            affected = self.app.remove(self.current_cell_index)
            if not self.cells:
                self.current_cell_index = self.app.insert()
            elif self.current_cell_index >= len(self.cells):
                self.current_cell_index = len(self.cells) - 1
            msg = "[green]Cell deleted[/green]"
            if affected:
                msg += f" [dim](refreshed {', '.join(map(str, affected))})[/dim]"
            self._set_message(msg)

    def select_format(self):
        """Choose the representation shown for the current cell."""
        selector = self.app.selector(self.current_cell_index)
        names = selector.names()
        if len(names) < 2:
            self._set_message("[yellow]No other formats for this cell[/yellow]")
            return

        choice = Prompt.ask("Format", choices=names, default=selector.active.label())
        rep = self.app.select_format(self.current_cell_index, choice)
        self._set_message(f"[green]Showing {rep.label()}[/green]")

    def show_variables(self):
        """Show names visible after the current cell."""
        get_namespace = getattr(self.app.engine, "get_namespace", None)
        if get_namespace is None:
            self._set_message("[yellow]Engine does not expose variables[/yellow]")
            return

        variables = get_namespace(self.current_cell_index)
        if not variables:
            console.print("\n[yellow]No variables defined[/yellow]")
            console.input("\n[dim]Press Enter to continue...[/dim]")
            return

        table = Table(
            title=f"Variables after cell {self.current_cell_index}",
            border_style="cyan",
            show_lines=True,
        )
        table.add_column("Name", style="bold cyan", no_wrap=True)
        table.add_column("Type", style="yellow")
        table.add_column("Value", max_width=60, overflow="ellipsis")

        for name in sorted(variables):
            value = variables[name]
            var_str = repr(value)
            if len(var_str) > 60:
                var_str = var_str[:57] + "..."
            table.add_row(name, type(value).__name__, var_str)

        console.print()
        console.print(table)
        console.input("\n[dim]Press Enter to continue...[/dim]")

    def handle_key(self, key: str):
        """Run the command bound to `key`."""
        if key == "q":
            self.running = False

        elif key == "h":
            self.app.toggle_help()

        elif key == "" or key == "enter":
            self.edit_current_cell()

        elif key == "a":
            self.add_cell()

        elif key == "d":
            self.delete_current_cell()

        elif key == "f":
            self.select_format()

        elif key == "?":
            self.show_variables()

        elif key in ("j", "down"):
            if self.current_cell_index < len(self.cells) - 1:
                self.current_cell_index += 1

        elif key in ("k", "up"):
            if self.current_cell_index > 0:
                self.current_cell_index -= 1

        elif key == "g":
            self.current_cell_index = 0

        elif key == "G":
            self.current_cell_index = len(self.cells) - 1

        else:
            self._set_message(f"[dim]Unknown command: '{key}' (press 'h' for help)[/dim]")

    def run(self):
        """Run the interactive editor."""
        self.app.start()
        self.offer_restore()

        while self.running:
            self.display_cells()
            self.display_command_bar()

            try:
                key = console.input("\n[bold cyan]> [/bold cyan]").strip()
            except (KeyboardInterrupt, EOFError):
                key = "q"

            try:
                self.handle_key(key)
            except CalcbookError as e:
                self._set_message(f"[red]{e}[/red]")

        self.app.close()
        console.print("\n[green]Goodbye![/green]")


def _setup_logging(verbose: bool):
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log engine and storage activity")
@click.option("--storage", type=click.Path(dir_okay=False), default=None,
              help="Session storage file (default: $CALCBOOK_STORAGE or ~/.calcbook/storage.json)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, storage: Optional[str]):
    """calcbook: a reactive calculation notebook."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["storage"] = FileStorage(Path(storage) if storage else None)


@main.command()
@click.pass_context
def edit(ctx: click.Context):
    """Open the interactive notebook."""
    app = NotebookApp(storage=ctx.obj["storage"])
    editor = NotebookEditor(app)
    try:
        editor.run()
    except CalcbookError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


@main.command(name="eval")
@click.argument("expressions", nargs=-1, required=True)
@click.option("--format", "-f", "format_name", default=None, help="Representation to show, e.g. Scientific")
def eval_command(expressions: tuple[str, ...], format_name: Optional[str]):
    """Evaluate EXPRESSIONS as consecutive cells and print the results.

    Nothing is read from or written to session storage.
    """
    app = NotebookApp(storage=MemoryStorage(), persist=False)
    try:
        app.start()
        for i, code in enumerate(expressions):
            if i > 0:
                app.insert()
            app.write(i, code)
    except CalcbookError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    table = Table(border_style="blue", show_lines=True)
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("Code", style="white")
    table.add_column("Result")
    table.add_column("Time", style="dim", justify="right")

    failed = False
    for i, cell in enumerate(app.state.cells):
        if cell.error:
            failed = True
            result = Text(cell.error, style="red")
        else:
            result = render_representation(app.select_format(i, format_name))
        table.add_row(str(i), cell.code, result, cell.time or "")

    console.print(table)
    if failed:
        sys.exit(1)


@main.group()
def session():
    """Inspect or clear the stored session."""


@session.command(name="show")
@click.pass_context
def session_show(ctx: click.Context):
    """Print the stored cell sources."""
    adapter = PersistenceAdapter(ctx.obj["storage"])
    sources = adapter.load_previous_session()
    if not sources:
        console.print("[yellow]No saved session[/yellow]")
        return

    table = Table(title="Saved Session", border_style="blue", show_lines=True)
    table.add_column("#", style="bold cyan", justify="right")
    table.add_column("Code")
    for i, code in enumerate(sources):
        table.add_row(str(i), code or Text("(empty)", style="dim italic"))
    console.print(table)


@session.command(name="clear")
@click.pass_context
def session_clear(ctx: click.Context):
    """Forget the stored session."""
    adapter = PersistenceAdapter(ctx.obj["storage"])
    try:
        adapter.clear()
    except CalcbookError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    console.print("[green]Saved session cleared[/green]")


if __name__ == "__main__":
    main()
