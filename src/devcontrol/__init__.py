"""devcontrol -- Container and database control service.

Exposes a small set of administrative actions (container start/stop/restart,
log tails, MySQL dump and restore, host metrics) behind a token and
capability gate. Every action runs exactly one external binary as an
argument vector and relays its exit code and output.
"""

__version__ = "0.1.0"
