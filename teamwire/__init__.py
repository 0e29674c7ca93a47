"""teamwire: team orchestration and messaging for cooperating worker processes."""

__version__ = "0.1.0"
