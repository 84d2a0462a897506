"""Account services: credentials, tokens, one-time codes and throttling.

HTTP handlers in ``racing_plate.api.auth`` stay thin and call into here.
"""
