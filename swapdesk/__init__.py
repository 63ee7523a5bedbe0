"""
SwapDesk: swap order execution pipeline.

Orders are routed across simulated liquidity venues, executed by a
queue-backed worker with retry, and broadcast to live subscribers.
"""

__version__ = "0.1.0"
