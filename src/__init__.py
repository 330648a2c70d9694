"""
EMPORIUM - Trading Card Marketplace Backend

This package provides the account and authentication core of the EMPORIUM
marketplace: password login, TOTP multi-factor authentication, backup codes,
purpose-scoped JWT issuance and the request gate that guards private and
admin routes.
"""

__version__ = "0.1.0"
__author__ = "EMPORIUM Team"
