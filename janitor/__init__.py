"""Janitor - node reboot remediation controller."""

__version__ = "0.1.0"
