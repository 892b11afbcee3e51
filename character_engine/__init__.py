"""
Character Engine
================

Real-time conversational character engine.

This package provides:
- Speech segmentation of streamed client audio
- A typed, streaming pipeline graph with conditional routing
- Per-session conversation state
- The wire protocol for text, audio, error and interaction-end events
- A WebSocket/HTTP surface for loading characters and talking to them
"""

__version__ = "1.0.0"
