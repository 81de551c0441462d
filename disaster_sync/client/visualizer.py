"""
MODULE OVERVIEW:
The Rich Terminal Dashboard.

WHAT IS HAPPENING HERE:
We use Rich to render the SyncController's local state: the disaster list, the
selected disaster's reports and resources, live notifications and the state of
the connection. The controller runs on the same event loop in the background;
the dashboard only reads from it and redraws a few times per second.
"""

from rich.live import Live
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
import asyncio

from disaster_sync.client.notifications import Notification
from disaster_sync.client.sync import SyncController

STATUS_COLORS = {"CONNECTED": "green", "CONNECTING": "yellow", "DEGRADED": "red", "CLOSED": "red"}
LEVEL_STYLES = {"info": "cyan", "success": "green", "warning": "yellow", "error": "red bold"}
SEVERITY_STYLES = {"critical": "red bold", "high": "red", "medium": "yellow", "low": "green"}


def toast_line(n: Notification) -> str:
    ts = n.posted_at.astimezone().strftime("%H:%M:%S")
    return f"[{LEVEL_STYLES[n.level]}][{ts}] {n.message}[/]"


class Visualizer:
    def __init__(self, controller: SyncController):
        self.controller = controller

    def _header(self) -> Panel:
        realtime = self.controller.realtime
        connectivity = self.controller.connectivity
        status = realtime.status
        color = STATUS_COLORS.get(status, "yellow")
        text = (
            f"[{color} bold]Real-time: {status}[/] | "
            f"Endpoint: {connectivity.active_url} ({connectivity.link_state.value})"
        )
        if self.controller.notifications.degraded:
            text += " | [red bold]OFFLINE: polling only[/]"
        return Panel(text, style=color)

    def _disasters(self) -> Panel:
        table = Table(title="Disasters", expand=True)
        table.add_column("", width=1)
        table.add_column("Title", style="bold")
        table.add_column("Location", style="cyan")
        table.add_column("Status", style="magenta")
        table.add_column("Tags", style="blue")
        for d in self.controller.disasters:
            marker = ">" if d.id == self.controller.selected_id else ""
            table.add_row(marker, d.title, d.location_name or "-", d.status, ", ".join(d.tags))
        return Panel(table, title="Feed")

    def _reports(self) -> Panel:
        selected = self.controller.selected
        table = Table(expand=True)
        table.add_column("Time", style="cyan", no_wrap=True)
        table.add_column("Severity")
        table.add_column("Report", style="green")
        for r in self.controller.reports[:10]:
            style = SEVERITY_STYLES.get(r.severity, "white")
            content = r.content[:60] + "..." if len(r.content) > 60 else r.content
            table.add_row(r.created_at.strftime("%H:%M:%S"), f"[{style}]{r.severity}[/]", content)
        title = f"Reports: {selected.title}" if selected else "Reports (no disaster selected)"
        return Panel(table, title=title)

    def _stats(self) -> Panel:
        stats = self.controller.realtime.stats
        text = (
            f"Events Received: {stats['events_received']}\n"
            f"Frames Rejected: {stats['frames_rejected']}\n"
            f"Reconnects: {stats['reconnect_count']}\n"
            f"Resources: {len(self.controller.resources)}\n"
            f"Alerts: {len(self.controller.alerts)}"
        )
        return Panel(text, title="Connection Stats")

    def _notifications(self) -> Panel:
        lines = []
        for n in reversed(self.controller.notifications.active()):
            lines.append(toast_line(n))
        return Panel("\n".join(lines), title="Notifications")

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["left"].split_column(
            Layout(name="disasters"),
            Layout(name="reports")
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="notifications")
        )

        layout["header"].update(self._header())
        layout["disasters"].update(self._disasters())
        layout["reports"].update(self._reports())
        layout["stats"].update(self._stats())
        layout["notifications"].update(self._notifications())
        return layout

    async def run(self, duration_s: float, disaster_id: str | None = None):
        await self.controller.start()
        if disaster_id is None and self.controller.disasters:
            disaster_id = self.controller.disasters[0].id
        if disaster_id is not None:
            await self.controller.select_disaster(disaster_id)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_s
        try:
            with Live(self.generate_layout(), refresh_per_second=4) as live:
                while loop.time() < deadline:
                    live.update(self.generate_layout())
                    await asyncio.sleep(0.25)
        finally:
            await self.controller.stop()
