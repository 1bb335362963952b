"""Capture-and-count pipeline: interpreter, projector, session state machine."""
