"""Agents package: engine-facing agent classes."""

from agents.base_agent import BaseAgent
from agents.writer_agent import WriterAgent, parse_writer_output

__all__ = [
    "BaseAgent",
    "WriterAgent",
    "parse_writer_output",
]
