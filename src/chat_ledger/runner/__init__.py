"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- register-user: Register a sender phone
- ingest: Process an inbound message
- reply: Handle a confirmation reply
- edit: Correct a prediction
- sweep: Time out expired pending confirmations
- status / policy: Inspect pipeline state
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
