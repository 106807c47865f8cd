"""Back-office session and order workflow core.

To use the session manager:
    from backoffice.core.session import SessionManager

To drive order status changes:
    from backoffice.core.workflow import OrderWorkflow

The operator CLI lives in scripts/backoffice_cli.py.
"""
