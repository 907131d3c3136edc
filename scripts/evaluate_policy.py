#!/usr/bin/env python3
"""
Policy Evaluation CLI

Evaluates a request against a policy document file, or validates a document,
without running the API.
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import get_settings
from src.logging_config import configure_logging
from src.models.policies import PolicyContext, PolicyResult, PolicySubject
from src.models.tenants import POLICY_SECTION_KEY, Tenant
from src.security.audit import AuditLog, AuditLogger
from src.security.exceptions import UnsupportedPolicyVersion
from src.security.policies import PolicyEngine, decode_policy_document
from src.storage import InMemoryCache, InMemoryTenantStore


def load_policy(path: str) -> dict:
    """Read a policy document from a JSON file."""
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def create_engine(tenant_id: str, policy: dict) -> PolicyEngine:
    """Create an engine holding a single tenant with the given policy."""
    store = InMemoryTenantStore([
        Tenant(id=tenant_id, configuration={POLICY_SECTION_KEY: policy}),
    ])
    return PolicyEngine(
        cache=InMemoryCache(),
        tenant_store=store,
        audit_logger=AuditLogger(AuditLog(), enable_console=False),
    )


def build_subject(role: str = None, user: str = None) -> PolicySubject:
    if role:
        return PolicySubject.role(role)
    return PolicySubject.user(user)


def format_result(result: PolicyResult) -> str:
    """Format a decision for display."""
    verdict = "ALLOW" if result.allowed else "DENY"
    lines = [f"{verdict}: {result.reason}"]
    if result.matched_rule_id:
        lines.append(f"  rule: {result.matched_rule_id}")
    return "\n".join(lines)


def report_invalid(error: Exception, output_format: str = "text") -> None:
    """Print why a document was rejected."""
    if isinstance(error, ValidationError):
        if output_format == "json":
            print(json.dumps(error.errors(include_url=False, include_context=False), indent=2, default=str))
        else:
            print(f"Invalid: {error.error_count()} error(s)\n{error}")
    else:
        print(f"Invalid: {error}")


def validate(policy: dict, output_format: str = "text") -> int:
    """Validate a document and report problems."""
    try:
        document = decode_policy_document(policy)
    except (UnsupportedPolicyVersion, ValidationError) as e:
        report_invalid(e, output_format)
        return 1

    if output_format == "json":
        print(document.model_dump_json(indent=2, by_alias=True))
    else:
        print(f"Valid: {len(document.roles)} role(s), {len(document.rules)} rule(s)")
    return 0


async def evaluate(args, policy: dict) -> int:
    """Evaluate one request. A document that does not decode exits with 1."""
    try:
        decode_policy_document(policy)
    except (UnsupportedPolicyVersion, ValidationError) as e:
        report_invalid(e, args.output)
        return 1

    engine = create_engine(args.tenant, policy)
    context = PolicyContext(
        tenant_id=args.tenant,
        workspace_id=args.workspace,
        user_id=args.user_id or args.user,
    )
    attributes = {"owner_id": args.owner} if args.owner else None

    result = await engine.evaluate(
        build_subject(args.role, args.user),
        args.action,
        args.resource,
        context,
        resource_attributes=attributes,
    )

    if args.output == "json":
        print(result.model_dump_json(indent=2))
    else:
        print(format_result(result))
    return 0 if result.allowed else 2


def main():
    parser = argparse.ArgumentParser(
        description="Evaluate authorization requests against a policy document",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  evaluate_policy.py policy.json --validate\n"
            "  evaluate_policy.py policy.json --role VIEWER -a read -r Article\n"
            "  evaluate_policy.py policy.json --user u-42 -a exportData -r Analytics"
        ),
    )

    parser.add_argument(
        "policy",
        help="Path to a JSON policy document",
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Only validate the document",
    )

    subject = parser.add_mutually_exclusive_group()
    subject.add_argument(
        "--role",
        help="Evaluate as this role",
    )
    subject.add_argument(
        "--user",
        help="Evaluate as this user id",
    )

    parser.add_argument(
        "-a", "--action",
        help="Requested action",
    )

    parser.add_argument(
        "-r", "--resource",
        help="Resource type",
    )

    parser.add_argument(
        "--tenant",
        default="cli",
        help="Tenant id used for the evaluation context",
    )

    parser.add_argument(
        "--workspace",
        help="Workspace id for the evaluation context",
    )

    parser.add_argument(
        "--user-id",
        help="Acting user id when evaluating as a role",
    )

    parser.add_argument(
        "--owner",
        help="Owner id of the targeted resource",
    )

    parser.add_argument(
        "-o", "--output",
        choices=["text", "json"],
        default="text",
        help="Output format",
    )

    args = parser.parse_args()
    configure_logging(get_settings(), stream=sys.stderr)

    try:
        policy = load_policy(args.policy)
    except (OSError, json.JSONDecodeError) as e:
        parser.error(f"cannot read policy: {e}")

    if args.validate:
        sys.exit(validate(policy, args.output))

    if not (args.role or args.user) or not args.action or not args.resource:
        parser.error("--role or --user, --action and --resource are required to evaluate")

    sys.exit(asyncio.run(evaluate(args, policy)))


if __name__ == "__main__":
    main()
