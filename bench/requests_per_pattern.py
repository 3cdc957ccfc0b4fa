"""Round-trip benchmark for the read channel.

Replays a footer-then-columns access pattern (the way columnar readers open a
file) against the in-memory transport and prints range requests and bytes
fetched per access pattern. Meant for manual runs.
"""

import os

from fastrange import AccessPattern, ObjectHandle, ObjectStorage, ReadOptions
from fastrange.io import MemoryTransport

OBJECT_SIZE = 64 * 1024 * 1024
COLUMN_SIZE = 256 * 1024


def replay(pattern: AccessPattern) -> MemoryTransport:
    transport = MemoryTransport(chunk_size=2 * 1024 * 1024)
    storage = ObjectStorage(transport)
    handle = ObjectHandle("bench", "table.bin")
    storage.create_object(handle, os.urandom(OBJECT_SIZE))

    options = ReadOptions(access_pattern=pattern, min_range_request_size=64 * 1024)
    with storage.open(handle, options) as channel:
        # footer magic, then footer metadata
        channel.seek(OBJECT_SIZE - 8)
        channel.read(8)
        channel.seek(OBJECT_SIZE - 16 * 1024)
        channel.read(16 * 1024 - 8)
        # a few column chunks, each read in two halves
        for column_start in range(0, OBJECT_SIZE // 2, OBJECT_SIZE // 8):
            channel.seek(column_start)
            channel.read(COLUMN_SIZE // 2)
            channel.read(COLUMN_SIZE // 2)
    return transport


if __name__ == "__main__":
    print("fastrange round-trip benchmark")
    print("=" * 40)
    for pattern in AccessPattern:
        transport = replay(pattern)
        reads = len(transport.range_requests)
        print(f"{pattern.value:>10}: {reads} range requests, {transport.bytes_fetched} bytes fetched")
