"""issuegate - bug tracker gateway in front of the GitHub issues API.

High-level public API:

from issuegate import Gateway, load_config

cfg = load_config('issuegate.config.yaml')
gateway = Gateway.from_config(cfg)
response = gateway.handle(Request('GET', '/api/issues', query={'state': 'open'}))

For an HTTP server use ``issuegate.asgi.create_app`` (or ``issuegate serve``).
"""

from __future__ import annotations

from .board import Board
from .config import GatewayConfig, load_config
from .gateway import Gateway, Request, Response
from .mapping import Column, to_column, to_label_delta

# Version constant (sync manually with pyproject)
__version__ = "0.3.0"

__all__ = [
    "Board",
    "Column",
    "Gateway",
    "GatewayConfig",
    "Request",
    "Response",
    "load_config",
    "to_column",
    "to_label_delta",
    "__version__",
]
