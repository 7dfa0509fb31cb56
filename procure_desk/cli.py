#!/usr/bin/env python3
"""
Procure Desk command line - act on purchase requests from a terminal.

Tokens come from the environment (PROCURE_ACCESS_TOKEN, PROCURE_REFRESH_TOKEN);
the procurement API URL comes from PROCUREMENT_API_URL or --api-url.

Usage:
    procure-desk pending
    procure-desk approve 42 --comments "Looks good"
    procure-desk reject 42 --comments "Over budget"
    procure-desk extract 42 ./proforma.pdf --type proforma
"""

import argparse
import asyncio
import json
import mimetypes
import os
import sys
from pathlib import Path
from .core.config import settings
from .core.errors import CommentsRequiredError, ProcureDeskError
from .core.logging import setup_logging
from .services.api_client import ProcurementApiClient
from .services.approval_flow import ApprovalSubmissionFlow, SubmissionOutcome
from .services.document_pipeline import DocumentExtractionPipeline, UploadedDocument
from .services.events import ProcessingProgress
from .services.extraction_types import DocumentType
from .services.pending_approvals import PendingApprovalsQueue
from .services.session import InMemorySessionStore


def _session_from_env() -> InMemorySessionStore:
    return InMemorySessionStore(
        access_token=os.environ.get("PROCURE_ACCESS_TOKEN"),
        refresh_token=os.environ.get("PROCURE_REFRESH_TOKEN"),
    )


async def _actor(client: ProcurementApiClient):
    actor = client.session.get_actor()
    if actor is None:
        actor = await client.get_profile()
        client.session.set_actor(actor)
    return actor


async def cmd_pending(client: ProcurementApiClient, args) -> int:
    queue = PendingApprovalsQueue(client, await _actor(client))
    items = await queue.refresh()

    print("=" * 70)
    print(f"PENDING APPROVALS ({len(queue.actionable())} actionable of {len(items)})")
    print("=" * 70)
    for item in items:
        request = item.request
        marker = "*" if item.eligible else " "
        print(f"{marker} #{request.id:<6} {request.title[:36]:<36} {request.amount:>12}  {item.approval_level_label}")
        if args.verbose:
            print(f"          {item.eligibility.reason}")
    if not items:
        print("Nothing waiting for approval.")
    return 0


async def cmd_decide(client: ProcurementApiClient, args) -> int:
    request = await client.get_request(args.request_id)
    flow = ApprovalSubmissionFlow(client, request, await _actor(client))
    flow.begin(args.command)
    flow.comments = args.comments or ""
    result = await flow.submit()

    if result.outcome == SubmissionOutcome.VALIDATION_FAILED:
        raise CommentsRequiredError(result.message)
    if result.outcome == SubmissionOutcome.ERROR:
        print(f"❌ {result.message}")
        return 1

    verb = "Approved" if args.command == "approve" else "Rejected"
    try:
        refreshed = await client.get_request(args.request_id)
    except ProcureDeskError as e:
        print(f"✅ {verb} request #{request.id} (could not reload it: {e.message})")
        return 0
    print(f"✅ {verb} request #{refreshed.id} (status: {refreshed.status})")
    return 0


def _print_progress(progress: ProcessingProgress) -> None:
    if progress.state == "processing" and progress.attempt:
        print(f"   ... {progress.job_status} (attempt {progress.attempt}/{progress.max_attempts})")
    else:
        print(f"🔄 {progress.state}")


async def cmd_extract(client: ProcurementApiClient, args) -> int:
    path = Path(args.file)
    if not path.is_file():
        print(f"❌ File not found: {path}")
        return 1

    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    document = UploadedDocument(filename=path.name, content=path.read_bytes(), content_type=content_type)
    pipeline = DocumentExtractionPipeline(client, on_progress=_print_progress)
    outcome = await pipeline.process(args.request_id, document, args.type)

    result = outcome.result
    print()
    print("📊 EXTRACTION RESULTS:")
    print(f"   Vendor: {result.vendor.name}")
    print(f"   Email: {result.vendor.email}")
    print(f"   Items: {len(result.items)}")
    print(f"   Total: {result.totals.currency or ''} {result.totals.total}")
    if args.json:
        print(json.dumps(result.model_dump(mode="json", exclude={"raw"}), indent=2))
    return 0


COMMANDS = {
    "pending": cmd_pending,
    "approve": cmd_decide,
    "reject": cmd_decide,
    "extract": cmd_extract,
}


async def run(args) -> int:
    async with ProcurementApiClient(_session_from_env(), base_url=args.api_url) as client:
        return await COMMANDS[args.command](client, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="procure-desk",
        description="List, approve and reject purchase requests, and extract documents"
    )
    parser.add_argument(
        '--api-url',
        default=settings.procurement_api_url,
        help=f'Procurement API base URL (default: {settings.procurement_api_url})'
    )
    parser.add_argument('--log-level', default="WARNING", help='Log level (default: WARNING)')
    sub = parser.add_subparsers(dest="command", required=True)

    pending = sub.add_parser("pending", help="List requests awaiting approval")
    pending.add_argument('-v', '--verbose', action="store_true", help="Show the eligibility reason")

    approve = sub.add_parser("approve", help="Approve a request")
    approve.add_argument("request_id")
    approve.add_argument('--comments', default=None, help="Optional approval comments")

    reject = sub.add_parser("reject", help="Reject a request")
    reject.add_argument("request_id")
    reject.add_argument('--comments', required=True, help="Reason for rejecting (required)")

    extract = sub.add_parser("extract", help="Upload a proforma or receipt and extract its data")
    extract.add_argument("request_id")
    extract.add_argument("file")
    extract.add_argument(
        '--type',
        choices=[t.value for t in DocumentType],
        default=DocumentType.PROFORMA.value,
        help="Document type (default: proforma)"
    )
    extract.add_argument('--json', action="store_true", help="Also print the full result as JSON")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        return asyncio.run(run(args))
    except ProcureDeskError as e:
        print(f"❌ {e.message}")
        if e.suggestion:
            print(f"   {e.suggestion}")
        return 1
    except KeyboardInterrupt:
        print("\n👋 Cancelled")
        return 130


if __name__ == "__main__":
    sys.exit(main())
