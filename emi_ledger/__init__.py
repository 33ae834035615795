"""EMI ledger: loan accounts and serialized EMI payment processing."""

__version__ = "0.1.0"
