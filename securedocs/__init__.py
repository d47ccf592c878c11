"""
Secure Document Issuance Service
Issues signed, encrypted identity documents and verifies them.
"""

__version__ = "1.0.0"
