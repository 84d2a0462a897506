"""Game domain services: session lifecycle and leaderboard bookkeeping.

This package contains the domain logic imported by HTTP routes and the CLI,
keeping transport concerns separated from how results are recorded and
ranked.
"""
