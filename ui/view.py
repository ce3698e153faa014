# ============================================================
# Lithia - Interactive SQL Console
# ui/view.py - Frame rendering (pure functions of a snapshot)
# ============================================================

from typing import Any, Sequence

from rich import box
from rich.console import Group
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.state import DbStatus, InputMode, QueryStatus, StateSnapshot
from utils.helpers import mask_uri

CURSOR = "█"

_DB_STATUS_STYLE = {
    DbStatus.CONNECTED: ("Connected", "green"),
    DbStatus.DISCONNECTED: ("Disconnected", "red"),
}

_QUERY_STATUS_STYLE = {
    QueryStatus.NOT_STARTED: ("Ready", ""),
    QueryStatus.WAITING: ("Waiting", "yellow"),
    QueryStatus.COMPLETE: ("Complete", "green"),
    QueryStatus.FAILED: ("Failed", "red"),
}

KEY_LEGEND = (
    ("c", "connection"),
    ("e", "query"),
    ("d", "disconnect"),
    ("p", "show/hide password"),
    ("q", "quit"),
)


def render(snapshot: StateSnapshot) -> Layout:
    """Build one full frame for the given snapshot."""
    layout = Layout(name="root")
    layout.split_column(
        Layout(name="connection", size=3),
        Layout(name="help", size=1),
        Layout(name="query", size=3),
        Layout(name="body"),
        Layout(name="footer", size=1),
    )
    layout["body"].split_row(
        Layout(name="results", ratio=3),
        Layout(name="connections", ratio=1),
    )

    layout["connection"].update(connection_panel(snapshot))
    layout["help"].update(help_line(snapshot))
    layout["query"].update(query_panel(snapshot))
    layout["results"].update(results_panel(snapshot))
    layout["connections"].update(connections_panel(snapshot))
    layout["footer"].update(footer_line(snapshot))
    return layout


def connection_panel(snapshot: StateSnapshot) -> Panel:
    editing = snapshot.input_mode is InputMode.EDITING_CONNECTION
    if editing:
        # Typing with a masked password would be unreadable
        body = Text(snapshot.connection_input + CURSOR, style="yellow")
        title = Text(" Editing connection... ")
    else:
        body = Text(mask_uri(snapshot.connection_input, visible=snapshot.show_password))
        label, style = _DB_STATUS_STYLE[snapshot.db_status]
        title = Text.assemble(" Connection (c) - Status: ", (f"{label} ", style))
    return Panel(body, title=title, title_align="left", box=box.SQUARE)


def help_line(snapshot: StateSnapshot) -> Text:
    if snapshot.input_mode is InputMode.NORMAL or snapshot.input_mode is InputMode.EDITING_CONNECTION:
        label, style = _QUERY_STATUS_STYLE[snapshot.query_status]
        return Text.assemble("Query (e) Status: ", (label, style))
    return Text.assemble(
        "Press ",
        ("Esc", "bold"),
        " to stop editing, ",
        ("Enter", "bold"),
        " to run the query",
    )


def query_panel(snapshot: StateSnapshot) -> Panel:
    if snapshot.input_mode is InputMode.EDITING_QUERY:
        body = Text(snapshot.query_input + CURSOR, style="yellow")
    else:
        body = Text(snapshot.query_input)
    return Panel(body, title="Input", title_align="left", box=box.SQUARE)


def build_result_table(columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> Table:
    """Rich table for a result set; NULLs shown dimmed."""
    table = Table(
        box=box.SIMPLE_HEAVY,
        show_header=bool(columns),
        header_style="bold cyan",
        border_style="dim white",
        show_lines=False,
        pad_edge=False,
    )

    width = len(columns) if columns else max((len(r) for r in rows), default=0)
    for i in range(width):
        name = str(columns[i]) if i < len(columns) else ""
        table.add_column(name, style="white", no_wrap=False)

    for row in rows:
        cells = []
        for cell in row:
            if cell is None:
                cells.append(Text("NULL", style="dim italic yellow"))
            elif isinstance(cell, (bytes, bytearray)):
                cells.append(Text(f"0x{bytes(cell).hex()}", style="dim"))
            else:
                cells.append(str(cell))
        table.add_row(*cells)

    return table


def results_panel(snapshot: StateSnapshot) -> Panel:
    if snapshot.result_rows or snapshot.result_columns:
        content = build_result_table(snapshot.result_columns, snapshot.result_rows)
    else:
        content = Text("No results yet", style="dim")
    return Panel(content, title="Results", title_align="left", box=box.SQUARE)


def connections_panel(snapshot: StateSnapshot) -> Panel:
    if not snapshot.connections:
        return Panel(Text("none", style="dim"), title="Connections", title_align="left", box=box.SQUARE)

    lines = []
    for uri, status in snapshot.connections:
        label, style = _DB_STATUS_STYLE[status]
        marker = "▶ " if uri == snapshot.connection_input else "  "
        line = Text(marker)
        line.append(mask_uri(uri, visible=snapshot.show_password))
        line.append(f" [{label}]", style=style)
        lines.append(line)
    return Panel(Group(*lines), title="Connections", title_align="left", box=box.SQUARE)


def footer_line(snapshot: StateSnapshot) -> Text:
    if snapshot.last_error:
        return Text(f"✗ {snapshot.last_error}", style="bold red", no_wrap=True, overflow="ellipsis")
    if snapshot.notice:
        return Text(f"✓ {snapshot.notice}", style="green", no_wrap=True, overflow="ellipsis")
    text = Text(no_wrap=True, overflow="ellipsis")
    for key, action in KEY_LEGEND:
        text.append(f" {key} ", style="bold reverse")
        text.append(f" {action}  ", style="dim")
    return text
