"""
Chat message → Transaction extraction → Human confirmation → Ledger

A pipeline that turns free-form voice or text messages into committed
transactions, asking the sender to confirm each record until the cohort's
measured accuracy makes confirmation unnecessary.
"""

__version__ = "0.1.0"
