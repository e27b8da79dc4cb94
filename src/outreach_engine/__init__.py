"""Autonomous outreach engine.

Discovers small-business prospects, emails them inside tuned send windows,
and moves between growth phases as the customer count changes.
"""

__version__ = "0.1.0"
