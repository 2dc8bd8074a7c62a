"""Command-line interface for live2hls."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

import aiohttp
import click

from .errors import ProbeError, TranscodeFailed, TransitionInProgress
from .models import SessionConfig
from .probe import probe_info
from .session import LiveSession

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


async def make_request(method: str, url: str, **kwargs):
    """Make an async HTTP request."""
    async with aiohttp.ClientSession() as session:
        async with session.request(method, url, **kwargs) as response:
            response.raise_for_status()
            return await response.json()


@click.group()
@click.option("--log-level", default="INFO", show_default=True, help="Logging level")
def cli(log_level):
    """Live multi-rendition HLS packager."""
    logging.basicConfig(level=getattr(logging, log_level.upper(), logging.INFO), format=LOG_FORMAT)


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--output-root", default="output", show_default=True, help="Directory holding one folder per channel")
def serve(host, port, output_root):
    """Run the HTTP API and serve generated playlists."""
    from .server import create_app

    app = create_app(Path(output_root))
    app.run(host=host, port=port)


@cli.command()
@click.argument("sources", nargs=-1, required=True)
@click.option("--output-dir", required=True, type=click.Path(file_okay=False), help="Directory to (re)create")
@click.option("--base-url", help="Prefix for URIs written into playlists")
@click.option("--mask", "resolution_mask", default=4, show_default=True, type=int, help="Rendition mask 1:360p 2:480p 4:720p 8:1080p")
@click.option("--segment-time", default=5, show_default=True, type=int, help="Seconds per segment")
@click.option("--window-size", default=5, show_default=True, type=int, help="Segments listed per live playlist")
@click.option("--switch-after", type=float, help="Seconds before switching to the next source (default: when it ends)")
def run(sources, output_dir, base_url, resolution_mask, segment_time, window_size, switch_after):
    """Emit SOURCES one after another into a single live output."""
    config = SessionConfig(
        output_dir=Path(output_dir),
        base_url=base_url,
        resolution_mask=resolution_mask,
        segment_time=segment_time,
        window_size=window_size,
    )

    try:
        asyncio.run(_run_sources(config, sources, switch_after))
    except TranscodeFailed as exc:
        click.echo(f"Error: {exc.reason}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("Interrupted")


async def _run_sources(config: SessionConfig, sources: Sequence[str], switch_after: Optional[float]) -> None:
    session = LiveSession(config)
    click.echo(f"Master playlist: {session.master_playlist_path}")
    running: list[asyncio.Task] = []

    try:
        for index, source in enumerate(sources):
            task = await _emit_when_ready(session, source, config.segment_time)
            running.append(task)
            if index == len(sources) - 1:
                break
            if switch_after is None:
                await asyncio.wait({task})
            else:
                await asyncio.wait({task}, timeout=switch_after)

        for task in running:
            code = await task
            if code != 0:
                logger.warning("Transcoder exited with code %s", code)
    except (asyncio.CancelledError, TranscodeFailed):
        await session.stop()
        raise


async def _emit_when_ready(session: LiveSession, source: str, retry_delay: float) -> asyncio.Task:
    while True:
        try:
            emission = session.open_emission(source)
        except TransitionInProgress:
            await asyncio.sleep(retry_delay)
            continue
        click.echo(f"Emitting {source}")
        return asyncio.create_task(session.run_emission(emission))


@cli.command()
@click.argument("source")
def probe(source):
    """Describe SOURCE with ffprobe."""
    try:
        info = asyncio.run(probe_info(source))
    except ProbeError as exc:
        click.echo(f"Error: {exc}", err=True)
        sys.exit(1)
    click.echo(json.dumps(info, indent=2))


@cli.command()
@click.option("--source", help="Source to emit right away")
@click.option("--label", help="Human-friendly label for the channel")
@click.option("--base-url", help="Prefix for URIs written into playlists")
@click.option("--mask", "resolution_mask", type=int, help="Rendition mask 1:360p 2:480p 4:720p 8:1080p")
@click.option("--segment-time", type=int, help="Seconds per segment")
@click.option("--window-size", type=int, help="Segments listed per live playlist")
@click.option("--server", default="http://localhost:8000", help="Server URL")
def add_channel(source, label, base_url, resolution_mask, segment_time, window_size, server):
    """Create a channel on a running server."""
    payload = {}
    if source:
        payload["source"] = source
    if label:
        payload["label"] = label
    if base_url:
        payload["base_url"] = base_url
    if resolution_mask is not None:
        payload["resolution_mask"] = resolution_mask
    if segment_time is not None:
        payload["segment_time"] = segment_time
    if window_size is not None:
        payload["window_size"] = window_size

    async def _run():
        try:
            result = await make_request("POST", f"{server}/channels", json=payload)
            click.echo("Channel added successfully!")
            click.echo(f"Channel ID: {result['channel_id']}")
            click.echo(f"HLS URL: {server}{result['hls_url']}")
            click.echo(f"Status: {result['status']}")
        except Exception as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    asyncio.run(_run())


@cli.command()
@click.option("--channel-id", required=True, help="Channel to switch")
@click.option("--source", required=True, help="New source")
@click.option("--server", default="http://localhost:8000", help="Server URL")
def emit(channel_id, source, server):
    """Switch a channel on a running server to SOURCE."""
    async def _run():
        try:
            result = await make_request("POST", f"{server}/channels/{channel_id}/emit", json={"source": source})
            click.echo(f"Channel {channel_id} is {result['status']}")
        except aiohttp.ClientResponseError as exc:
            if exc.status == 409:
                click.echo("Error: channel is still switching sources, retry later", err=True)
            else:
                click.echo(f"Error: {exc}", err=True)
            sys.exit(1)
        except Exception as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    asyncio.run(_run())


@cli.command()
@click.option("--channel-id", required=True, help="Channel ID to remove")
@click.option("--server", default="http://localhost:8000", help="Server URL")
def remove_channel(channel_id, server):
    """Remove a channel."""
    async def _run():
        try:
            await make_request("DELETE", f"{server}/channels/{channel_id}")
            click.echo(f"Channel {channel_id} removed successfully!")
        except Exception as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    asyncio.run(_run())


@cli.command()
@click.option("--server", default="http://localhost:8000", help="Server URL")
def list_channels(server):
    """List all channels."""
    async def _run():
        try:
            result = await make_request("GET", f"{server}/channels")
            channels = result.get("channels", [])

            if not channels:
                click.echo("No channels")
                return

            click.echo(f"Found {len(channels)} channel(s):")
            click.echo()

            for channel in channels:
                click.echo(f"Channel ID: {channel['channel_id']}")
                click.echo(f"  Status: {channel['status']}")
                click.echo(f"  HLS URL: {server}{channel['hls_url']}")
                if channel.get("label"):
                    click.echo(f"  Label: {channel['label']}")
                if channel.get("current_source"):
                    click.echo(f"  Source: {channel['current_source']}")
                if channel.get("draining_source"):
                    click.echo(f"  Draining: {channel['draining_source']}")
                if channel.get("pending_source"):
                    click.echo(f"  Pending: {channel['pending_source']}")
                for height, sequence in channel.get("last_sequence", {}).items():
                    click.echo(f"  Last Sequence {height}p: {sequence}")
                if channel.get("error"):
                    click.echo(f"  Error: {channel['error']}")
                click.echo()
        except Exception as exc:
            click.echo(f"Error: {exc}", err=True)
            sys.exit(1)

    asyncio.run(_run())


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
