"""hledger-web JSON protocol support.

Each hledger-web release family encodes accounts and transactions slightly
differently. This package holds the version catalog, the pydantic models of
the wire format, and the gateway that converts between the wire format and
the domain models.
"""
