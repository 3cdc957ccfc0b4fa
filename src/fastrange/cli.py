"""CLI implementation for fastrange."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from .core.errors import InvalidArgumentError
from .core.model import ObjectHandle
from .core.options import AccessPattern, ReadOptions, StorageOptions
from .io import open_transport
from .storage import ObjectStorage

app = typer.Typer(add_completion=False, help="Stat, read and write remote objects by byte range.")


class _State:
    endpoint: Optional[str] = None
    trace: bool = False


state = _State()


def _storage() -> ObjectStorage:
    options = StorageOptions.from_env()
    endpoint = state.endpoint or options.endpoint
    options = StorageOptions(endpoint=endpoint, timeout_s=options.timeout_s,
                             chunk_size=options.chunk_size,
                             trace_log_enabled=state.trace or options.trace_log_enabled)
    return ObjectStorage(open_transport(endpoint, options=options))


def _handle(uri: str) -> ObjectHandle:
    try:
        return ObjectHandle.from_uri(uri)
    except InvalidArgumentError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)


@app.callback()
def main(
    endpoint: Optional[str] = typer.Option(None, "--endpoint", help="Object store URL (default: $FASTRANGE_ENDPOINT)"),
    trace: bool = typer.Option(False, "--trace", help="Log one JSON record per wire message"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
):
    """Global options shared by every command."""
    state.endpoint = endpoint
    state.trace = trace
    if verbose or trace:
        logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, stream=sys.stderr,
                            format="%(name)s %(levelname)s %(message)s")


@app.command()
def stat(uri: str = typer.Argument(..., help="gs://bucket/object")):
    """Print object metadata as JSON."""
    handle = _handle(uri)
    with _storage() as storage:
        try:
            info = storage.get_item_info(handle)
        except IOError as e:
            typer.echo(f"Metadata request for {handle} failed: {e}", err=True)
            raise typer.Exit(code=1)
    typer.echo(json.dumps(info.as_dict(), indent=2))
    if not info.exists:
        raise typer.Exit(code=1)


@app.command()
def cat(
    uri: str = typer.Argument(..., help="gs://bucket/object"),
    offset: int = typer.Option(0, "--offset", min=0, help="First byte to read"),
    length: Optional[int] = typer.Option(None, "--length", min=0, help="Bytes to read (default: to the end)"),
    pattern: AccessPattern = typer.Option(AccessPattern.AUTO, "--pattern", case_sensitive=False, help="Access pattern hint"),
    min_range: int = typer.Option(ReadOptions.min_range_request_size, "--min-range", min=1, help="Minimum range request size"),
    inplace_limit: int = typer.Option(ReadOptions.inplace_seek_limit, "--inplace-limit", min=0, help="In-place seek limit"),
    checksums: bool = typer.Option(False, "--checksums", help="Validate CRC32C checksums"),
    output: Optional[Path] = typer.Option(None, "-o", "--output", help="Write to PATH instead of stdout"),
):
    """Read a byte range of an object."""
    handle = _handle(uri)
    read_options = ReadOptions(access_pattern=pattern, min_range_request_size=min_range,
                               inplace_seek_limit=inplace_limit, checksums_enabled=checksums)
    with _storage() as storage:
        try:
            channel = storage.open(handle, read_options)
        except IOError as e:
            typer.echo(str(e), err=True)
            raise typer.Exit(code=1)

        with channel:
            if offset > channel.size:
                typer.echo(f"Offset {offset} is past the end of {handle} ({channel.size} bytes)", err=True)
                raise typer.Exit(code=2)
            channel.seek(offset)
            remaining = channel.size - offset if length is None else min(length, channel.size - offset)

            sink = open(output, "wb") if output else sys.stdout.buffer
            try:
                buf = bytearray(min(remaining, 1024 * 1024) or 1)
                while remaining > 0:
                    n = channel.readinto(memoryview(buf)[:min(len(buf), remaining)])
                    if n == 0:
                        break
                    sink.write(buf[:n])
                    remaining -= n
                sink.flush()
            except IOError as e:
                typer.echo(f"Reading {handle} failed: {e}", err=True)
                raise typer.Exit(code=1)
            finally:
                if output:
                    sink.close()


@app.command()
def put(
    uri: str = typer.Argument(..., help="gs://bucket/object"),
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="Local file to upload"),
):
    """Upload a local file as an object (single request)."""
    handle = _handle(uri)
    data = source.read_bytes()
    with _storage() as storage:
        try:
            info = storage.create_object(handle, data)
        except IOError as e:
            typer.echo(f"Upload of {handle} failed: {e}", err=True)
            raise typer.Exit(code=1)
    typer.echo(json.dumps(info.as_dict(), indent=2))


if __name__ == "__main__":
    app()
