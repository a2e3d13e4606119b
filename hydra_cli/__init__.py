"""
Hydra CLI - Three-layer client for the Hydra CI REST API.

Layers:
- core: Settings, sessions, credentials and the HTTP client
- sdk: High-level HydraClient with one method per resource
- cli: Opinionated command-line interface
"""

__version__ = "0.1.0"

from hydra_cli.sdk import HydraClient  # noqa: E402

__all__ = ["HydraClient"]
