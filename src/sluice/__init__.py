"""
sluice: encrypted physical backups of every node in a database cluster.

Each node's backup stream is staged, prepared, re-archived and encrypted
into an artifact pair that appears in the output directory atomically.
"""

__version__ = "0.1.0"
