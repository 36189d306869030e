"""Run external commands under a hard timeout with line-logged output."""

__version__ = "0.1.0"
