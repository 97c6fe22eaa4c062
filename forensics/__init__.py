"""
Forensic Event Ledger

An append-only, hash-chained log of evidence events with
content-addressed attachments. Every event commits to its predecessor,
so any later edit, deletion, insertion or reordering is detectable.
"""

__version__ = "0.1.0"
