"""I/O layer for fastrange - streams byte ranges of remote objects."""

from typing import Optional

# Re-export these for import convenience
from .base import Chunk, RangeStream, ObjectTransport, RequestEvent, MessageDirection, RequestTrace
from .memory import MemoryTransport
from .http_sync import HTTPTransport, open_http_transport
from ..core.errors import InvalidArgumentError
from ..core.options import StorageOptions


def open_transport(endpoint: Optional[str] = None, *, options: Optional[StorageOptions] = None, **kwargs):
    """Factory function to create the transport matching the endpoint scheme."""
    options = options or (StorageOptions(endpoint=endpoint) if endpoint else StorageOptions.from_env())
    endpoint = endpoint or options.endpoint

    interceptors = list(kwargs.pop("interceptors", ()))
    if options.trace_log_enabled:
        from ..tracing import TracingInterceptor
        interceptors.append(TracingInterceptor())

    if endpoint.startswith("memory://"):
        return MemoryTransport(chunk_size=options.chunk_size, interceptors=interceptors, **kwargs)
    if endpoint.startswith(("http://", "https://")):
        return open_http_transport(endpoint, options=options, interceptors=interceptors, **kwargs)
    raise InvalidArgumentError(f"Unsupported endpoint: {endpoint!r}")
