"""
botls - automated ACME certificate lifecycle manager.

Keeps a configured set of TLS certificates issued and renewed
before they expire, without manual intervention.
"""

__version__ = "0.5.0"
