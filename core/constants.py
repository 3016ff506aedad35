"""
Core — Constants

Shared constants: audit actions, pagination limits.

@file core/constants.py
"""

AUDIT_ACTION_CREATE = 'CREATE'
AUDIT_ACTION_UPDATE = 'UPDATE'
AUDIT_ACTION_SALE = 'SALE'
AUDIT_ACTION_RETURN = 'RETURN'
AUDIT_ACTION_STATUS_CHANGE = 'STATUS_CHANGE'

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 200

# Monetary values are stored with two decimals.
MONEY_PLACES = 2
