"""Simulated RPC network, key/value services and a small MapReduce framework."""

__version__ = "0.1.0"