"""Command line access to the saved-query library."""

from pathlib import Path
from typing import Optional

import typer
from rich import print
from rich.console import Console
from rich.markup import escape
from rich.tree import Tree

from .models.query_tree import FolderNode, Forest, TreeNode
from .services.config import get_config
from .services.tree_store import (
    DEFAULT_EXPORT_FILENAME,
    MutationResult,
    TreeStore,
    open_tree_store,
)

APP_HELP = """
qm-library: organize saved SQL queries into folders.

The library is auto-saved to the local database after every change
(QM_DATABASE_PATH, key QM_SNAPSHOT_KEY). Node ids are shown in dim text by
`show` and are what every other command takes.

DRAG-AND-DROP SEMANTICS (`move ACTIVE OVER`):
- ACTIVE and OVER in the same folder (or both at the root): reorder,
  ACTIVE takes OVER's position.
- OVER is a folder somewhere else: ACTIVE is appended to that folder.
- Anything else (a query in another folder, a folder inside ACTIVE) is rejected.
"""

app = typer.Typer(name="qm-library", help=APP_HELP, no_args_is_help=True)
console = Console()


def _open_store() -> TreeStore:
    store = open_tree_store(get_config())
    store.on_persist_error(lambda error: print(f"[red]Not saved:[/red] {error.message}"))
    return store


def _add_branch(branch: Tree, node: TreeNode) -> None:
    if isinstance(node, FolderNode):
        child = branch.add(f"[bold blue]{escape(node.name)}[/bold blue] [dim]{node.id}[/dim]")
        for grandchild in node.children:
            _add_branch(child, grandchild)
    else:
        chart = " [magenta](chart)[/magenta]" if node.chart_config else ""
        branch.add(f"{escape(node.name)}{chart} [dim]{node.id}[/dim]")


def render_forest(forest: Forest) -> Tree:
    tree = Tree("[bold]Query Library[/bold]")
    for node in forest:
        _add_branch(tree, node)
    return tree


def _finish(result: MutationResult, success: str) -> None:
    if result.error is not None:
        print(f"[red]Error ({result.error.code}):[/red] {result.error.message}")
        for error in result.error.details.get("errors", []):
            print(f"  [dim]{'.'.join(error['loc'])}:[/dim] {error['message']}")
        raise typer.Exit(code=1)
    if result.changed:
        print(f"[green]{success}[/green]")
    else:
        print("[yellow]Nothing changed.[/yellow]")


@app.command()
def show():
    """
    Print the library tree with node ids.
    """
    store = _open_store()
    console.print(render_forest(store.forest))


@app.command("sql")
def show_sql(query_id: str = typer.Argument(..., help="Query id")):
    """
    Print the SQL text of a saved query.
    """
    store = _open_store()
    text = store.get_query_text(query_id)
    if text is None:
        print(f"[red]Not a saved query:[/red] {query_id}")
        raise typer.Exit(code=1)
    console.print(text, markup=False, highlight=False)


@app.command("add-folder")
def add_folder(
    name: str = typer.Argument(..., help="Folder name"),
    parent: Optional[str] = typer.Option(None, "--parent", "-p", help="Parent folder id"),
):
    """
    Create a folder at the root, or inside --parent.
    """
    store = _open_store()
    result = store.add_folder(name, parent)
    _finish(result, f"Created folder '{name}' ({result.node_id})")


@app.command("add-query")
def add_query(
    name: str = typer.Argument(..., help="Query name"),
    parent: Optional[str] = typer.Option(None, "--parent", "-p", help="Parent folder id"),
    sql: Optional[str] = typer.Option(None, "--sql", help="Initial SQL text"),
):
    """
    Create a saved query at the root, or inside --parent.
    """
    store = _open_store()
    result = store.add_query(name, parent, text=sql)
    _finish(result, f"Created query '{name}' ({result.node_id})")


@app.command()
def rename(
    node_id: str = typer.Argument(..., help="Node id"),
    name: str = typer.Argument(..., help="New name"),
):
    """
    Rename a folder or query.
    """
    store = _open_store()
    _finish(store.rename(node_id, name), f"Renamed {node_id} to '{name}'")


@app.command()
def delete(node_id: str = typer.Argument(..., help="Node id")):
    """
    Delete a node; folders are deleted with everything inside them.
    """
    store = _open_store()
    _finish(store.delete_node(node_id), f"Deleted {node_id}")


@app.command()
def move(
    active_id: str = typer.Argument(..., help="Node being dragged"),
    over_id: str = typer.Argument(..., help="Node it is dropped on"),
):
    """
    Drop ACTIVE onto OVER (reorder within a folder, or move into a folder).
    """
    store = _open_store()
    result = store.move(active_id, over_id)
    outcome = result.outcome.value if result.outcome else "none"
    _finish(result, f"Moved {active_id} ({outcome})")


@app.command("export")
def export_library(
    path: Path = typer.Argument(
        Path(DEFAULT_EXPORT_FILENAME), help="Target file or directory"
    ),
):
    """
    Write the library to a JSON file.
    """
    store = _open_store()
    try:
        target = store.export_library(path)
    except OSError as exc:
        print(f"[red]Export failed:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    print(f"[green]Exported library to {target}[/green]")


@app.command("import")
def import_library(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Library JSON file"),
):
    """
    Replace the library with the contents of a JSON file.
    """
    store = _open_store()
    try:
        result = store.import_library(path)
    except OSError as exc:
        print(f"[red]Import failed:[/red] {escape(str(exc))}")
        raise typer.Exit(code=1)
    _finish(result, f"Imported library from {path}")


if __name__ == "__main__":
    app()
