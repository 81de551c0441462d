"""
CLI entrypoint for the disaster response real-time layer.
"""
import typer
import asyncio
import json

from disaster_sync.client.connectivity import ConnectivityManager
from disaster_sync.client.notifications import NotificationCenter
from disaster_sync.client.sync import SyncController
from disaster_sync.client.visualizer import Visualizer
from disaster_sync.shared.config import settings

app = typer.Typer(help="Disaster Response Real-Time CLI Manager")


@app.command()
def server(
    host: str = typer.Option("0.0.0.0", help="Interface to bind"),
    port: int = typer.Option(settings.PORT, help="Port to listen on"),
):
    """Start the FastAPI backend server using Uvicorn."""
    import uvicorn
    typer.echo(f"Starting server on port {port}...")
    uvicorn.run("disaster_sync.server.main:app", host=host, port=port, log_level=settings.LOG_LEVEL.lower())


@app.command()
def dashboard(
    duration: float = typer.Option(300.0, help="How long to keep the dashboard open, in seconds"),
    disaster: str = typer.Option(None, help="Disaster id to select; defaults to the newest"),
    primary: str = typer.Option(settings.PRIMARY_API_URL, help="Primary API base URL"),
    fallback: str = typer.Option(settings.FALLBACK_API_URL, help="Local fallback API base URL"),
    user: str = typer.Option(settings.DEFAULT_USER_ID, help="User id sent as x-user-id"),
):
    """Run the sync controller with the rich visualizer dashboard."""
    notifications = NotificationCenter()
    connectivity = ConnectivityManager(primary, fallback, user_id=user, notifications=notifications)
    controller = SyncController(connectivity, notifications)
    visualizer = Visualizer(controller)
    try:
        asyncio.run(visualizer.run(duration, disaster_id=disaster))
    except KeyboardInterrupt:
        pass


@app.command()
def stats(url: str = typer.Option(settings.PRIMARY_API_URL, help="Server base URL")):
    """Query the server for live connection stats."""
    import httpx
    resp = httpx.get(f"{url.rstrip('/')}/stats")
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def alert(
    message: str = typer.Argument(..., help="Alert text"),
    severity: str = typer.Option("high", help="low, medium, high or critical"),
    disaster: str = typer.Option(None, help="Scope the alert to one disaster"),
    url: str = typer.Option(settings.PRIMARY_API_URL, help="Server base URL"),
):
    """Broadcast an emergency alert over the real-time channel."""
    import websockets
    from disaster_sync.shared.client_utils import to_ws_url

    async def send():
        async with websockets.connect(f"{to_ws_url(url)}?client_id=cli_alert") as ws:
            await ws.send(json.dumps({
                "action": "emergency_alert",
                "disaster_id": disaster,
                "message": message,
                "severity": severity,
            }))

    try:
        asyncio.run(send())
    except (OSError, websockets.WebSocketException) as e:
        typer.echo(f"Failed to send alert: {e}")
        raise typer.Exit(1)
    typer.echo("Alert sent.")


if __name__ == "__main__":
    app()
