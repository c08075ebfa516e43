"""Syzygy: a stdio JSON-RPC tool server for recording test units.

An agent drives the server through tools to start runs, append steps,
anchors and database checks, crystallize a run into artifacts, replay
those artifacts, and self-check the run against a compliance policy.
"""

__version__ = "0.1.0"
