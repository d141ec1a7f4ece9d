"""
Trade risk and lifecycle management engine.

Subpackages:
- lib: constants, configuration, logging and time utilities
- risk: risk gate, daily counters, position sizing and stop math
- trading: events, execution port, position lifecycle and trade engine
"""

__version__ = "0.1.0"
