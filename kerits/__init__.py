"""
kerits: KERI-style self-certifying identifiers and credential registries.

Hash-chained key event logs with pre-rotation, transaction event logs for
ACDC credential registries anchored into them, and the SAID, codec and
verification machinery both rely on.
"""

__version__ = "0.1.0-dev"
