"""Remote hub provisioning over SSH."""

__version__ = "0.3.0"
