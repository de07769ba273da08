"""
Docflow

Sequential multi-approver document workflows with conditional state
transitions, hash-chained audit trails and post-commit notifications.
"""

__version__ = "1.0.0"
