"""Live quiz session services: state machine, timers, tallies and reports.

This package contains the session synchronization core. HTTP routes and
socket handlers import it, keeping transport concerns separated from the
question lifecycle, answer aggregation and scoring rules.
"""
