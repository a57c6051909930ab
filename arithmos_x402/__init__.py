"""
Arithmos x402

Pay-per-call blockchain data and security analysis API for autonomous agents,
gated by the x402 payment protocol.
"""

__version__ = "1.0.0"
