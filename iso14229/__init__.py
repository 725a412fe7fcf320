"""UDS (ISO 14229) diagnostic client and server state machines over a user-supplied transport."""

__version__ = "0.1.0"

__all__ = [
    "client",
    "constants",
    "download",
    "events",
    "responses",
    "server",
    "services",
    "transfer",
    "transport",
]