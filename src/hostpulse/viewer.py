"""hostpulse - Terminal viewer for a running hostpulse server."""

import asyncio
import json
import logging
from enum import Enum

import aiohttp
from pydantic import ValidationError
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import DataTable, Footer, Static

from hostpulse.models import ProcessSample, Snapshot, StaticHostInfo
from hostpulse.session import PERFORMANCE_DATA, SYSTEM_INFO

logger = logging.getLogger(__name__)

DEFAULT_URL = "ws://localhost:3000/ws"


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    NAME = "name"


def format_uptime(uptime: float) -> str:
    """Format seconds as `HH:MM:SS`, prefixed with days when needed."""
    days = int(uptime // 86400)
    hours = int((uptime % 86400) // 3600)
    minutes = int((uptime % 3600) // 60)
    seconds = int(uptime % 60)
    if days > 0:
        return f"{days} days, {hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def bar(percent: float, color: str) -> str:
    """A 20-cell usage bar in Textual markup."""
    filled = min(max(int(percent / 5), 0), 20)
    return f"[{color}]█[/{color}]" * filled + "[dim]░[/dim]" * (20 - filled)


class HeaderStats(Static):
    """Header widget showing host identity and load figures."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._host: StaticHostInfo | None = None
        self._snapshot: Snapshot | None = None

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_host_info(), id="host-info"),
            Static(self._get_load_info(), id="load-info"),
        )

    def update_host(self, host: StaticHostInfo) -> None:
        self._host = host
        self._refresh_display()

    def update_stats(self, snapshot: Snapshot) -> None:
        """Update the statistics from a snapshot."""
        self._snapshot = snapshot
        self._refresh_display()

    def _refresh_display(self) -> None:
        try:
            self.query_one("#host-info", Static).update(self._get_host_info())
            self.query_one("#load-info", Static).update(self._get_load_info())
        except Exception:
            pass  # Widget not mounted yet

    def _get_host_info(self) -> str:
        if self._host is None:
            return "Waiting for host info..."
        host = self._host
        uptime = format_uptime(self._snapshot.uptime) if self._snapshot else "--:--:--"
        return (
            f"[b]{host.hostname}[/b] ({host.platform}/{host.arch})\n"
            f"{host.cpu_model}\n"
            f"{host.cpu_cores} cores, {host.total_memory} GiB RAM\n"
            f"Uptime: {uptime}"
        )

    def _get_load_info(self) -> str:
        if self._snapshot is None:
            return "Waiting for data..."
        snap = self._snapshot
        disk_percent = float(snap.disk.use_percent)
        # Escaped brackets for the bar containers
        return (
            f"CPU \\[{bar(snap.cpu, 'green')}] {snap.cpu:6.2f}%  {snap.temp:.0f}°C\n"
            f"Mem \\[{bar(snap.ram, 'cyan')}] {snap.ram:6.2f}%\n"
            f"Dsk \\[{bar(disk_percent, 'yellow')}] {snap.disk.used}G/{snap.disk.total}G\n"
            f"Net rx {snap.network.rx} KB/s  tx {snap.network.tx} KB/s"
        )


class ProcessTable(Container):
    """Container for the top-processes data table."""

    DEFAULT_CSS = """
    ProcessTable {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessTable."""
        super().__init__(*args, **kwargs)
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM)
        return self._sort_key

    def compose(self) -> ComposeResult:
        yield DataTable(id="process-table")

    def on_mount(self) -> None:
        table = self.query_one("#process-table", DataTable)
        table.cursor_type = "row"
        table.add_column("PID", key="pid", width=8)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)
        table.add_column("Name", key="name")

    def update_processes(self, processes: list[ProcessSample]) -> None:
        """
        Update the process table with new data.

        The table is rebuilt in sorted order on every update; it never holds
        more than a handful of rows.
        """
        table = self.query_one("#process-table", DataTable)
        table.clear()
        for proc in self._sort_processes(processes):
            table.add_row(str(proc.pid), proc.cpu, proc.mem, proc.name, key=str(proc.pid))

    def _sort_processes(self, processes: list[ProcessSample]) -> list[ProcessSample]:
        key_func = {
            SortKey.CPU: lambda p: float(p.cpu),
            SortKey.MEM: lambda p: float(p.mem),
            SortKey.PID: lambda p: p.pid,
            SortKey.NAME: lambda p: p.name.lower(),
        }
        return sorted(processes, key=key_func[self._sort_key], reverse=self._sort_reverse)


class PulseViewerApp(App):
    """Textual client subscribed to a hostpulse server."""

    TITLE = "hostpulse"
    SUB_TITLE = "connecting..."

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #host-info {
        width: 1fr;
        padding-right: 2;
    }

    #load-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
    ]

    def __init__(self, url: str = DEFAULT_URL, reconnect_delay: float = 2.0) -> None:
        """
        Initialize the PulseViewerApp.

        Args:
            url: WebSocket endpoint of the server.
            reconnect_delay: Seconds to wait before reconnecting.
        """
        super().__init__()
        self._url = url
        self._reconnect_delay = reconnect_delay
        self.connected = False

    def compose(self) -> ComposeResult:
        yield HeaderStats(id="header-stats")
        yield ProcessTable()
        yield Footer()

    def on_mount(self) -> None:
        """Subscribe to the server when the app is mounted."""
        self.run_worker(self._listen(), exclusive=True, name="telemetry")

    async def _listen(self) -> None:
        """Receive messages until the app exits, reconnecting on failure."""
        while True:
            try:
                async with aiohttp.ClientSession() as http:
                    async with http.ws_connect(self._url) as ws:
                        self._set_connected(True)
                        async for msg in ws:
                            if msg.type == aiohttp.WSMsgType.TEXT:
                                self.handle_message(msg.data)
            except (aiohttp.ClientError, OSError) as exc:
                logger.debug("Connection to %s failed: %s", self._url, exc)
            self._set_connected(False)
            await asyncio.sleep(self._reconnect_delay)

    def _set_connected(self, connected: bool) -> None:
        self.connected = connected
        self.sub_title = self._url if connected else "disconnected, retrying..."

    def handle_message(self, raw: str) -> StaticHostInfo | Snapshot | None:
        """
        Decode a server message and render it.

        Returns the decoded record, or None when the message was dropped as
        malformed or of an unknown event.
        """
        try:
            message = json.loads(raw)
            event, data = message["event"], message["data"]
            if event == SYSTEM_INFO:
                item: StaticHostInfo | Snapshot = StaticHostInfo.model_validate(data)
            elif event == PERFORMANCE_DATA:
                item = Snapshot.model_validate(data)
            else:
                return None
        except ValidationError as exc:
            logger.debug("Dropping invalid message: %s", exc)
            return None
        except (ValueError, KeyError, TypeError) as exc:
            logger.debug("Dropping malformed message: %s", exc)
            return None

        if isinstance(item, StaticHostInfo):
            self._update_host(item)
        else:
            self._update_ui(item)
        return item

    def _update_host(self, host: StaticHostInfo) -> None:
        try:
            self.query_one("#header-stats", HeaderStats).update_host(host)
        except Exception:
            logger.exception("Rendering host info failed")

    def _update_ui(self, snapshot: Snapshot) -> None:
        try:
            self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
            self.query_one(ProcessTable).update_processes(list(snapshot.processes))
        except Exception:
            logger.exception("Rendering snapshot failed")

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        new_sort_key = self.query_one(ProcessTable).cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")

    def action_quit(self) -> None:
        self.exit()
