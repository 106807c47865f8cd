"""Operator CLI for back-office sessions and order status changes.

This module is a thin wrapper around backoffice.core; it holds no rules of
its own.
"""
from __future__ import annotations
import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backoffice.config import AppConfig, load_settings
from backoffice.core.api import (
    ApiClient,
    BackofficeError,
    RequestsTransport,
    SessionExpired,
    Unauthenticated,
)
from backoffice.core.credential_store import FileCredentialStore
from backoffice.core.models import OrderStatus
from backoffice.core.session import SessionManager
from backoffice.core.workflow import (
    DEFAULT_PAGE_SIZE,
    OrderWorkflow,
    TransitionPayload,
    available_transitions,
)

logger = logging.getLogger("backoffice.cli")


def build_session(cfg: AppConfig) -> SessionManager:
    """Wire the session manager from settings."""
    transport = RequestsTransport(cfg.api_base_url, timeout=cfg.request_timeout)
    store = FileCredentialStore(cfg.state_dir)
    return SessionManager(transport, store, warn_on_logout_failure=cfg.warn_on_logout_failure)


async def _restore(manager: SessionManager):
    identity = await manager.init()
    if identity is None:
        raise Unauthenticated("Not logged in")
    return identity


def _print_order(order) -> None:
    print(f"order {order.id}: status={order.status.value} amount={order.final_amount} "
          f"payment={order.payment_status or '-'} staff={order.assigned_staff_id or '-'}")


async def _run(args, manager: SessionManager) -> None:
    if args.cmd == "login":
        password = args.password or os.environ.get("BACKOFFICE_PASSWORD") or getpass.getpass("Password: ")
        identity = await manager.login(args.email, password)
        print(f"Logged in as {identity.full_name or identity.email} ({identity.role.value})")
        return

    if args.cmd == "logout":
        await manager.init()
        confirmed = await manager.logout()
        if not confirmed and manager.warn_on_logout_failure:
            print("[logout] Warning: server did not confirm logout; local session cleared", file=sys.stderr)
        print("Logged out")
        return

    identity = await _restore(manager)
    if args.cmd == "whoami":
        print(f"{identity.email} ({identity.role.value}) id={identity.id}")
        return

    if args.cmd == "change-password":
        current = args.current or getpass.getpass("Current password: ")
        new = args.new or getpass.getpass("New password: ")
        await manager.change_password(current, new)
        print("Password changed")
        return

    workflow = OrderWorkflow(ApiClient(manager))
    if args.cmd == "list":
        result = await workflow.list_orders(args.status, page=args.page, limit=args.limit)
        for order in result.orders:
            _print_order(order)
        print(f"page {result.page}/{result.total_pages} ({result.total} orders)")
        return

    order = await workflow.get_order(args.order_id)

    if args.cmd == "show":
        _print_order(order)
        targets = available_transitions(order.status, identity.role)
        print("next: " + (", ".join(t.value for t in targets) or "-"))
    elif args.cmd == "transition":
        updated = await workflow.request_transition(
            order, OrderStatus(args.to), identity, TransitionPayload(note=args.note)
        )
        _print_order(updated)
    elif args.cmd == "cancel":
        updated = await workflow.request_transition(
            order, OrderStatus.CANCELLED, identity, TransitionPayload(reason=args.reason)
        )
        _print_order(updated)
    elif args.cmd == "assign":
        _print_order(await workflow.assign_staff(order, args.staff_id, identity))
    elif args.cmd == "note":
        _print_order(await workflow.add_note(order, args.text, identity))


def main(argv=None) -> None:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Back-office session and order helper")
    sub = parser.add_subparsers(dest="cmd")

    sl = sub.add_parser("login")
    sl.add_argument("--email", required=True)
    sl.add_argument("--password", default=None, help="Defaults to $BACKOFFICE_PASSWORD or a prompt")

    sub.add_parser("logout")
    sub.add_parser("whoami")

    sp = sub.add_parser("change-password")
    sp.add_argument("--current", default=None, help="Prompted when omitted")
    sp.add_argument("--new", default=None, help="Prompted when omitted")

    sli = sub.add_parser("list")
    sli.add_argument("--status", default=None, choices=[s.value for s in OrderStatus])
    sli.add_argument("--page", type=int, default=1)
    sli.add_argument("--limit", type=int, default=DEFAULT_PAGE_SIZE)

    ss = sub.add_parser("show")
    ss.add_argument("--order-id", required=True)

    st = sub.add_parser("transition")
    st.add_argument("--order-id", required=True)
    st.add_argument("--to", required=True, choices=[s.value for s in OrderStatus if s is not OrderStatus.CANCELLED])
    st.add_argument("--note", default=None)

    sc = sub.add_parser("cancel")
    sc.add_argument("--order-id", required=True)
    sc.add_argument("--reason", required=True)

    sa = sub.add_parser("assign")
    sa.add_argument("--order-id", required=True)
    sa.add_argument("--staff-id", required=True)

    sn = sub.add_parser("note")
    sn.add_argument("--order-id", required=True)
    sn.add_argument("--text", required=True)

    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return

    cfg = load_settings()
    logging.basicConfig(level=cfg.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    manager = build_session(cfg)

    try:
        asyncio.run(_run(args, manager))
    except (SessionExpired, Unauthenticated) as e:
        print(f"[{args.cmd}] {e}. Run 'login' again.", file=sys.stderr)
        sys.exit(1)
    except BackofficeError as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
