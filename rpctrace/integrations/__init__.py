"""Integrations module for rpctrace."""

from rpctrace.integrations.logging import TraceContextFilter

__all__ = ["TraceContextFilter"]
