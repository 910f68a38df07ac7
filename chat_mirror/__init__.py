"""
chat-mirror: incremental markdown mirror for AI command-line transcripts.

This package provides the sync engine that keeps a folder of markdown
documents up to date with the session files written by several AI CLIs:
- Provider adapters that turn each on-disk format into a message stream
- A persistent per-file cursor store so re-scans never duplicate output
- The orchestrator that reconciles discovered files against cursors each cycle
"""

__version__ = "0.3.0"
