import json
import urllib.parse as up
from functools import wraps
from typing import Any, Callable, Optional

import typer

from config import Settings, configure_logging
from connect_host import open_controller
from errors import DeWormError
from oauth_flow import OAuthFlow
from search_utils import DebouncedSearch
from spotify_client import SpotifyClient, SpotifySession
from token_store import FileTokenStore

app = typer.Typer(help="DeWorm: replace the song stuck in your head via Spotify")


def _settings() -> Settings:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return settings


def _client(settings: Settings) -> SpotifyClient:
    return SpotifyClient(settings.client_id, settings.client_secret, settings.redirect_uri)


def _spotify() -> SpotifySession:
    settings = _settings()
    return SpotifySession(_client(settings), FileTokenStore(settings.token_file))


def _print_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


def reports_errors(fn: Callable) -> Callable:
    """Turn DeWormError into a red message and exit code 1."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except DeWormError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
    return wrapper


@app.command()
def serve(host: str = "127.0.0.1", port: int = 5000, debug: bool = False) -> None:
    """Run the DeWorm web app."""
    from auth import create_app

    try:
        web_app = create_app()
    except DeWormError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    web_app.run(host=host, port=port, debug=debug)


@app.command()
@reports_errors
def login(open_browser: bool = typer.Option(True, help="Open the authorize URL in a browser")) -> None:
    """Log in with Spotify and save tokens to the token file."""
    settings = _settings()
    flow = OAuthFlow(settings, _client(settings), FileTokenStore(settings.token_file))
    url = flow.begin_login()
    typer.echo(f"Authorize DeWorm here:\n\n  {url}\n")
    if open_browser:
        typer.launch(url)
    redirected = typer.prompt("Paste the URL Spotify redirected you to")
    params = dict(up.parse_qsl(up.urlsplit(redirected.strip()).query))
    session = flow.handle_callback(params)
    name = session.user_profile.display_name if session.user_profile else None
    typer.secho(f"Logged in{f' as {name}' if name else ''}.", fg=typer.colors.GREEN)


@app.command()
@reports_errors
def logout() -> None:
    """Forget the saved tokens."""
    settings = _settings()
    FileTokenStore(settings.token_file).clear()
    typer.echo("Logged out.")


@app.command()
@reports_errors
def whoami() -> None:
    """Show the Spotify profile of the logged-in user."""
    _print_json(_spotify().get_current_user().to_json())


@app.command()
@reports_errors
def search(query: str, limit: int = typer.Option(5, min=1, max=50)) -> None:
    """Search for tracks on Spotify matching QUERY."""
    for track in _spotify().search_tracks(query, limit=limit):
        typer.echo(f"{track.uri}  {track.name} - {track.artist_names}")


@app.command()
@reports_errors
def find(limit: int = typer.Option(5, min=1, max=50)) -> None:
    """Search as you type: each line refines the query, an empty line stops."""
    spotify = _spotify()

    def show(query: str) -> None:
        try:
            tracks = spotify.search_tracks(query, limit=limit)
        except DeWormError as e:
            typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
            return
        typer.secho(f"-- {query}", bold=True)
        for item in tracks:
            typer.echo(f"{item.uri}  {item.name} - {item.artist_names}")

    searcher = DebouncedSearch(show)
    try:
        while True:
            query = typer.prompt("search", default="", show_default=False)
            if not query.strip():
                break
            searcher.handle(query)
        searcher.flush()
    finally:
        searcher.cancel()


@app.command()
@reports_errors
def track(track_id: str) -> None:
    """Fetch a track by its Spotify ID."""
    _print_json(_spotify().get_track(track_id).to_json())


@app.command()
@reports_errors
def playlist(playlist_id: Optional[str] = typer.Argument(None, help="Defaults to the replacement playlist")) -> None:
    """List every track in a playlist."""
    settings = _settings()
    spotify = SpotifySession(_client(settings), FileTokenStore(settings.token_file))
    for item in spotify.get_playlist_tracks(playlist_id or settings.playlist_id):
        typer.echo(f"{item.uri}  {item.name} - {item.artist_names}")


@app.command()
@reports_errors
def devices() -> None:
    """List the playback devices Spotify knows about."""
    for device in _spotify().get_devices():
        active = "*" if device.get("is_active") else " "
        typer.echo(f"{active} {device.get('id')}  {device.get('name')} ({device.get('type')})")


@app.command()
@reports_errors
def play(uri: str, device: Optional[str] = typer.Option(None, help="Target device id")) -> None:
    """Play a track URI on a Spotify Connect device (the active one by default)."""
    controller = open_controller(_spotify(), device_id=device)
    controller.play(uri)
    typer.echo(f"Playing {uri} on {controller.device.device_id}")


@app.command()
@reports_errors
def volume(
    level: float = typer.Argument(..., min=0.0, max=1.0, help="0 mutes, 1 is full volume"),
    device: Optional[str] = typer.Option(None, help="Target device id"),
) -> None:
    """Set the volume of a Spotify Connect device."""
    controller = open_controller(_spotify(), device_id=device)
    controller.set_volume(level)
    typer.echo("Muted." if controller.muted else f"Volume {round(level * 100)}%")


@app.command()
@reports_errors
def pause(device: Optional[str] = typer.Option(None, help="Target device id")) -> None:
    """Pause playback."""
    _spotify().pause(device_id=device)
    typer.echo("Paused.")


if __name__ == "__main__":
    app()
