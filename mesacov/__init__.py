"""mesacov - coverage run orchestrator for the mesabox workspace."""

__version__ = "0.1.0"
