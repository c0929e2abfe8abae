"""Command-line driver for the reconciliation engine.

Desired state is read from a YAML (or JSON) file; the resource's state is kept
in a JSON file between runs.
"""
from __future__ import annotations
import argparse
import json
import logging
import os
import sys
from functools import partial
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .config import AppConfig, load_settings
from .core import audit
from .core.errors import DuplicateResourceError, ReconcileError, ValidationError
from .core.graph import DomainsClient, GraphClient, GraphError, UsersClient
from .core.reconciler import Reconciler, Timeouts
from .core.state import ResourceState, load_state, remove_state, save_state
from .resources import RESOURCE_TYPES, build_reconciler, parse_spec
from .resources.application import APPLICATION_RESOURCE_NAME
from .resources.domains import DomainFilter, DomainsDataSource
from .resources.user_lookup import UserLookup

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_VALIDATION = 2
EXIT_CONFLICT = 3

SENSITIVE_ATTRIBUTES = ("password", "value")


def _load_desired(path: Path) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValidationError(f"Desired state in {path} must be a mapping", field="config")
    return data


def _redacted(state: ResourceState) -> Dict[str, Any]:
    doc = state.to_dict()
    doc["attributes"] = {
        k: ("(sensitive)" if k in SENSITIVE_ATTRIBUTES and v is not None else v)
        for k, v in state.attributes.items()
    }
    return doc


def _print_state(state: ResourceState) -> None:
    print(json.dumps(_redacted(state), indent=2, sort_keys=True, default=str))


def _connect(config: AppConfig, api_version: Optional[str] = None) -> GraphClient:
    client = GraphClient(
        base_url=config.graph_url,
        tenant_id=config.tenant_id,
        api_version=api_version or config.graph_api_version,
        request_timeout=config.request_timeout,
    )
    client.authenticate_client_credentials(config.client_id, config.client_secret_resolved, config.authority_url)
    return client


def _reconciler(args: argparse.Namespace, config: AppConfig, graph: GraphClient) -> Reconciler:
    hook = partial(
        _audit_hook,
        operator=args.operator,
        tenant_id=config.tenant_id,
        audit_dir=Path(config.audit_log_dir),
    )
    return build_reconciler(
        args.type,
        graph,
        identity_governance_api_version=config.identity_governance_api_version,
        timeouts=Timeouts(
            create=config.create_timeout,
            read=config.read_timeout,
            update=config.update_timeout,
            delete=config.delete_timeout,
        ),
        audit_hook=hook,
    )


def _audit_hook(operation, resource_type, identity, *, success, details, **kwargs) -> None:
    audit.safe_log_event(operation, resource_type, identity, success=success, details=details, **kwargs)


def _stored_state(engine: Reconciler, path: Path) -> ResourceState:
    raw = load_state(path)
    if raw is None:
        return ResourceState(schema_version=engine.adapter.schema_version, resource_type=engine.resource_type)
    return engine.upgrade_state(raw)


def cmd_apply(args, config: AppConfig, graph: GraphClient) -> None:
    engine = _reconciler(args, config, graph)
    desired = _load_desired(args.config)
    if args.type == APPLICATION_RESOURCE_NAME:
        desired.setdefault("prevent_duplicate_names", config.prevent_duplicate_names)
    spec = parse_spec(args.type, desired)

    state = _stored_state(engine, args.state)
    if state.exists:
        state, drift = engine.refresh(state)
        if drift.absent:
            print(f"[apply] {args.type} {args.state} was deleted outside of this tool; recreating", file=sys.stderr)
        elif drift.changes:
            print(f"[apply] Drift detected on {', '.join(sorted(drift.changes))}", file=sys.stderr)

    try:
        state = engine.update(state, spec) if state.exists else engine.create(spec)
    except ReconcileError as exc:
        if exc.partial_state is not None:
            save_state(args.state, exc.partial_state)
        raise
    save_state(args.state, state)
    _print_state(state)


def cmd_refresh(args, config: AppConfig, graph: GraphClient) -> None:
    engine = _reconciler(args, config, graph)
    state = _stored_state(engine, args.state)
    state, drift = engine.refresh(state)
    if drift.absent:
        print(f"[refresh] {args.type} no longer exists; removing it from state", file=sys.stderr)
        remove_state(args.state)
        return
    for key, (before, after) in drift.changes.items():
        print(f"[refresh] {key}: {before!r} -> {after!r}", file=sys.stderr)
    save_state(args.state, state)
    _print_state(state)


def cmd_destroy(args, config: AppConfig, graph: GraphClient) -> None:
    engine = _reconciler(args, config, graph)
    state = _stored_state(engine, args.state)
    engine.delete(state)
    remove_state(args.state)
    print(f"[destroy] {args.type} {state.id or '(absent)'} deleted")


def cmd_upgrade_state(args) -> None:
    """Migrate a state file offline; no credentials needed."""
    engine = build_reconciler(args.type, GraphClient())
    raw = load_state(args.state)
    if raw is None:
        raise ValidationError(f"No state file at {args.state}", field="state")
    state = engine.upgrade_state(raw)
    save_state(args.state, state)
    _print_state(state)


def cmd_domains(args, config: AppConfig, graph: GraphClient) -> None:
    source = DomainsDataSource(DomainsClient(graph), timeout=config.read_timeout)
    result = source.read(DomainFilter(
        admin_managed=args.admin_managed,
        only_default=args.only_default,
        only_initial=args.only_initial,
        only_root=args.only_root,
        include_unverified=args.include_unverified,
        supports_services=args.supports_services or [],
    ))
    print(json.dumps({"id": result.id, "domains": [d.__dict__ for d in result.domains]}, indent=2))


def cmd_lookup_user(args, config: AppConfig, graph: GraphClient) -> None:
    lookup = UserLookup(UsersClient(graph), timeout=config.read_timeout)
    user = lookup.read(
        user_principal_name=args.upn,
        object_id=args.object_id,
        mail_nickname=args.mail_nickname,
    )
    print(json.dumps(user, indent=2, sort_keys=True))


COMMANDS = {
    "apply": cmd_apply,
    "refresh": cmd_refresh,
    "destroy": cmd_destroy,
    "domains": cmd_domains,
    "lookup-user": cmd_lookup_user,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Directory resource reconciliation")
    parser.add_argument("--tenant-id", default=os.environ.get("AZUREAD_TENANT_ID"))
    parser.add_argument("--client-id", default=os.environ.get("AZUREAD_CLIENT_ID"))
    parser.add_argument("--operator", default="cli",
                        help="Operator identifier for audit logs (default: cli)")
    parser.add_argument("--log-level", default=None)

    sub = parser.add_subparsers(dest="cmd")
    types = sorted(RESOURCE_TYPES)

    sa = sub.add_parser("apply", help="Create or update a resource to match a desired-state file")
    sa.add_argument("--type", required=True, choices=types)
    sa.add_argument("--config", required=True, type=Path)
    sa.add_argument("--state", required=True, type=Path)

    for name, text in (("refresh", "Re-read a resource and report drift"),
                       ("destroy", "Delete a resource"),
                       ("upgrade-state", "Migrate a state file to the current schema")):
        sp = sub.add_parser(name, help=text)
        sp.add_argument("--type", required=True, choices=types)
        sp.add_argument("--state", required=True, type=Path)

    sd = sub.add_parser("domains", help="List the tenant's domains")
    sd.add_argument("--admin-managed", action="store_true")
    sd.add_argument("--only-default", action="store_true")
    sd.add_argument("--only-initial", action="store_true")
    sd.add_argument("--only-root", action="store_true")
    sd.add_argument("--include-unverified", action="store_true")
    sd.add_argument("--supports-services", nargs="*")

    su = sub.add_parser("lookup-user", help="Find a user")
    key = su.add_mutually_exclusive_group(required=True)
    key.add_argument("--upn")
    key.add_argument("--object-id")
    key.add_argument("--mail-nickname")

    return parser


def main(argv: Optional[list] = None) -> int:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=(args.log_level or os.environ.get("LOG_LEVEL", "INFO")).upper(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.cmd == "upgrade-state":
            cmd_upgrade_state(args)
            return 0
        config = load_settings({"tenant_id": args.tenant_id, "client_id": args.client_id})
        logging.getLogger().setLevel(args.log_level.upper() if args.log_level else config.log_level)
        graph = _connect(config)
        COMMANDS[args.cmd](args, config, graph)
    except DuplicateResourceError as e:
        print(f"[{args.cmd}] Conflict: {e}", file=sys.stderr)
        print(
            f"[{args.cmd}] To manage the existing {e.resource_type}, import it: "
            f"write a state file with id {e.conflicting_id!r} and run 'refresh'",
            file=sys.stderr,
        )
        return EXIT_CONFLICT
    except ValidationError as e:
        print(f"[{args.cmd}] Invalid: {e}", file=sys.stderr)
        return EXIT_VALIDATION
    except (ReconcileError, GraphError, RuntimeError, ValueError) as e:
        print(f"[{args.cmd}] Error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    return 0


if __name__ == "__main__":
    sys.exit(main())
