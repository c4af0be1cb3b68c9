"""Student Portal session client."""

__version__ = "0.1.0"
