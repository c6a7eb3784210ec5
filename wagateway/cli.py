from __future__ import annotations
import json
import httpx
import typer
from rich import print
from rich.table import Table

app = typer.Typer(help="WhatsApp provider gateway CLI - manage instances and send messages through a running gateway.")

def _client(host: str, port: int, api_key: str) -> httpx.Client:
    headers = {"x-api-key": api_key} if api_key else {}
    return httpx.Client(base_url=f"http://{host}:{port}", headers=headers, timeout=30.0)

def _check(resp: httpx.Response) -> dict:
    if resp.status_code >= 400:
        print(f"[red]HTTP {resp.status_code}[/red] {resp.text}")
        raise typer.Exit(code=1)
    return resp.json()

@app.command()
def instances(host: str = "127.0.0.1", port: int = 8787, api_key: str = typer.Option("", envvar="WAGW_CLIENT_KEY")):
    """List instances known to the gateway."""
    with _client(host, port, api_key) as c:
        data = _check(c.get("/instances"))
    t = Table(title="Instances")
    t.add_column("instance_id"); t.add_column("business_id"); t.add_column("provider"); t.add_column("state"); t.add_column("last_activity")
    for s in data.get("instances", []):
        t.add_row(s["instance_id"], s["business_id"], s["provider"], s["status"]["state"], str(s.get("last_activity")))
    print(t)

@app.command()
def connect(
    instance_id: str,
    business_id: str,
    provider: str = typer.Option(None, help="Force a provider instead of the primary one."),
    host: str = "127.0.0.1",
    port: int = 8787,
    api_key: str = typer.Option("", envvar="WAGW_CLIENT_KEY"),
):
    """Connect an instance; prints the pairing QR data URI when pairing is needed."""
    with _client(host, port, api_key) as c:
        data = _check(c.post(f"/instances/{instance_id}/connect", json={"business_id": business_id, "provider": provider}))
    if data["kind"] == "status":
        print(f"[green]{instance_id} already {data['status']['state']}[/green]")
    else:
        print(f"[bold]Scan this code to pair {instance_id}[/bold]")
        print(data["qrcode"]["url"])

@app.command()
def status(
    instance_id: str,
    host: str = "127.0.0.1",
    port: int = 8787,
    api_key: str = typer.Option("", envvar="WAGW_CLIENT_KEY"),
):
    """Show the connection status of an instance."""
    with _client(host, port, api_key) as c:
        data = _check(c.get(f"/instances/{instance_id}/status"))
    print(data["status"])

@app.command()
def send(
    instance_id: str,
    to: str,
    text: str = typer.Option("", help="Plain text body."),
    media_url: str = typer.Option("", help="Send media from this URL instead of text."),
    mime_type: str = typer.Option("image/jpeg"),
    host: str = "127.0.0.1",
    port: int = 8787,
    api_key: str = typer.Option("", envvar="WAGW_CLIENT_KEY"),
):
    """Send a text or media message."""
    params: dict = {"to": to}
    if media_url:
        params["media"] = {"url": media_url, "mime_type": mime_type, "caption": text or None}
    elif text:
        params["text"] = text
    with _client(host, port, api_key) as c:
        data = _check(c.post(f"/instances/{instance_id}/messages", json=params))
    result = data["result"]
    colour = "green" if result["status"] != "failed" else "red"
    print(f"[{colour}]{result['status']}[/{colour}] {json.dumps(result)}")
    if result["status"] == "failed":
        raise typer.Exit(code=1)

@app.command()
def disconnect(
    instance_id: str,
    host: str = "127.0.0.1",
    port: int = 8787,
    api_key: str = typer.Option("", envvar="WAGW_CLIENT_KEY"),
):
    """Log an instance out and drop its handlers."""
    with _client(host, port, api_key) as c:
        print(_check(c.delete(f"/instances/{instance_id}")))

def main():
    """Entry point for the CLI."""
    app()
