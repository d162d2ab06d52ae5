"""
Billing-state reconciliation for the grading assistant dashboard
"""

__version__ = "0.1.0"
