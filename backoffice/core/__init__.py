"""Core Business Logic Module

Session handling and order workflow rules for the back-office, independent
of any UI. Every network-bound operation is an asyncio coroutine.

Module Structure:
    - api/                 : Authorized request pipeline and transport
    - credential_store.py  : Durable credential / identity records
    - session.py           : Login, logout, bootstrap, single-flight renewal
    - rbac.py              : Role authorization gate
    - workflow.py          : Order status state machine
    - models.py            : Credential, Identity, Order and enums
    - audit.py             : Signed audit trail

Data flow:
    caller -> rbac -> workflow -> api.client -> session (on 401) -> credential_store

Public APIs:
    Session (backoffice.core.session):
        - SessionManager.login() / logout() / check_session() / renew()

    Workflow (backoffice.core.workflow):
        - OrderWorkflow.request_transition()
        - OrderWorkflow.assign_staff()
        - OrderWorkflow.add_note()
        - OrderWorkflow.get_order()
        - allowed_next(), allowed_roles(), available_transitions()

    RBAC (backoffice.core.rbac):
        - authorize()
        - require_role()
"""
