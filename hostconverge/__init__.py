"""hostconverge — declarative convergence of a single host to a target state."""

__version__ = "0.1.0"
