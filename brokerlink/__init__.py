"""
Brokerlink — resilient integration layer for brokerage and market-data APIs.

Holds brokerage credentials encrypted at rest, keeps OAuth-style sessions
alive across requests, bounds retries and respects daily quotas of metered
providers.
"""

__version__ = "0.1.0"
