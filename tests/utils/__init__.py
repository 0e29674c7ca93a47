"""Shared test doubles."""

from .fakes import FakeTmux, ShutdownResponder

__all__ = ["FakeTmux", "ShutdownResponder"]
