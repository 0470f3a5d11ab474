"""Command-line entrypoint.

Commands
--------
run <query> <location>     one item through the whole pipeline
batch <file>               many items, sequentially, with a progress file
reset job <job_id>         staging + tracking back to pending
reset errors               every errored staging row
reset orphans              processed rows whose SERP has no ads
process-staging            run local extraction over pending staging rows
upload / backfill          publish PNG renderings, attach storage URLs
verify <job_id>            check one job across every table
status                     recent jobs or per-step counts
report                     static HTML SERP report

Exit status is 0 on success and 1 on configuration errors or unrecoverable
failures.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import signal
import sys
from collections.abc import Iterator
from dataclasses import asdict
from pathlib import Path
from typing import Any

import psycopg2
from google.cloud import storage  # type: ignore[attr-defined]

from .backoff import BackoffPolicy
from .batch import BatchCoordinator, load_batch_items
from .config import Settings
from .db.postgres import PostgresStore, sql_connect
from .errors import AdvaultError, ConfigurationError, PersistenceError, error_kind
from .extraction import StagingExtractor
from .logging import configure_logging, jlog, logging_context, set_global_context
from .pipeline import AdVaultPipeline, PipelineOptions
from .provider import JobSubmissionClient, build_session
from .recovery import RecoveryTools, ResetSummary
from .rendering import LandingPageRenderer
from .report import render_serp_report, verify_job
from .staging import StagingGateway
from .storage import ArtifactUploader
from .tracking import JobTracker
from .versioning import get_scraper_version

APP_NAME = "advault_scraper"


# ============================
# Wiring
# ============================


def open_store(settings: Settings) -> PostgresStore:
    settings.validate(database=True)
    common = dict(dbname=settings.db_name, sslmode=settings.db_sslmode)
    try:
        reader = sql_connect(
            settings.db_sql_conn,
            settings.db_host,
            settings.db_port,
            user=settings.db_user,
            password=settings.db_password,
            **common,
        )
        writer = reader
        if settings.db_write_user or settings.db_write_password:
            writer = sql_connect(
                settings.db_sql_conn,
                settings.db_host,
                settings.db_port,
                user=settings.db_write_user or settings.db_user,
                password=settings.db_write_password or settings.db_password,
                **common,
            )
    except psycopg2.Error as exc:
        raise PersistenceError(f"database connection failed: {exc}") from exc
    return PostgresStore(reader, writer)


@contextlib.contextmanager
def store_session(settings: Settings) -> Iterator[PostgresStore]:
    store = open_store(settings)
    try:
        yield store
    finally:
        store.close()


def submit_policy(settings: Settings) -> BackoffPolicy:
    return BackoffPolicy(
        max_attempts=settings.submit_max_attempts,
        initial_delay=settings.submit_initial_delay_s,
        max_delay=settings.submit_max_delay_s,
        per_attempt_timeout=settings.per_attempt_timeout_s,
    )


def build_provider(settings: Settings) -> JobSubmissionClient:
    settings.validate(provider=True)
    return JobSubmissionClient(
        build_session(settings.provider_username or "", settings.provider_password or ""),
        base_url=settings.provider_base_url,
        realtime_url=settings.provider_realtime_url,
        poll_policy=submit_policy(settings),
        request_timeout=settings.per_attempt_timeout_s,
        render_timeout=settings.render_timeout_s,
    )


def build_uploader(settings: Settings, store: PostgresStore) -> ArtifactUploader:
    settings.validate(storage=True)
    return ArtifactUploader(storage.Client(project=settings.gcs_project), store)


def build_pipeline(settings: Settings, store: PostgresStore, args: argparse.Namespace) -> AdVaultPipeline:
    provider = build_provider(settings)
    upload = not getattr(args, "no_upload", False)
    options = PipelineOptions(
        submit_policy=submit_policy(settings),
        processing_policy=BackoffPolicy.constant(settings.processing_max_attempts, settings.processing_delay_s),
        max_ads=settings.max_ads,
        render_html=not getattr(args, "no_html", False),
        render_png=not getattr(args, "no_png", False),
        upload=upload,
        bucket=settings.gcs_bucket,
    )
    return AdVaultPipeline(
        provider=provider,
        gateway=StagingGateway(
            store,
            reprocess_on_error=settings.reprocess_on_error,
            lag_policy=BackoffPolicy.constant(settings.processing_lag_attempts, settings.processing_delay_s),
        ),
        tracker=JobTracker(store),
        renderer=LandingPageRenderer(provider, store, output_dir=settings.output_dir, courtesy_delay=settings.courtesy_delay_s),
        options=options,
        uploader=build_uploader(settings, store) if upload else None,
        extractor=StagingExtractor(store) if settings.local_extraction else None,
    )


def _cancel_event() -> asyncio.Event:
    cancel = asyncio.Event()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        asyncio.get_running_loop().add_signal_handler(signal.SIGTERM, cancel.set)
    return cancel


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str))


# ============================
# Commands
# ============================


def cmd_run(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        pipeline = build_pipeline(settings, store, args)

        async def go():
            return await pipeline.process_query(args.query, args.location, cancel=_cancel_event())

        result = asyncio.run(go())
    _emit(result.to_dict())
    return 0 if result.success else 1


def cmd_batch(args: argparse.Namespace, settings: Settings) -> int:
    items = load_batch_items(args.file)
    progress = args.progress or str(Path(settings.output_dir) / "batch-progress.json")
    with store_session(settings) as store:
        coordinator = BatchCoordinator(
            build_pipeline(settings, store, args),
            progress_path=progress,
            inter_item_delay=settings.inter_item_delay_s,
        )

        async def go():
            return await coordinator.run_batch(items, cancel=_cancel_event(), resume=args.resume)

        results = asyncio.run(go())
    succeeded = sum(1 for r in results if r.get("success"))
    _emit({"total": len(items), "succeeded": succeeded, "failed": len(results) - succeeded, "progress_file": progress})
    return 1 if items and not succeeded else 0


def _summary_dict(summary: ResetSummary) -> dict[str, Any]:
    return {"reset": [asdict(r) for r in summary.reset], "failed": summary.failed, "count": summary.count}


def cmd_reset(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        tools = RecoveryTools(store, JobTracker(store))
        if args.target == "job":
            if not args.job_id:
                raise ConfigurationError("reset job needs a job id")
            _emit(asdict(tools.reset_job(args.job_id)))
            return 0
        summary = tools.reset_all_errors() if args.target == "errors" else tools.reset_orphans()
    _emit(_summary_dict(summary))
    return 0


def cmd_process_staging(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        outcomes = StagingExtractor(store).process_pending(limit=args.limit)
    _emit([asdict(o) for o in outcomes])
    return 0


def cmd_upload(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        uploader = build_uploader(settings, store)
        if not uploader.ensure_bucket(args.bucket or settings.gcs_bucket):
            return 1
        results = asyncio.run(uploader.upload_pending(args.bucket or settings.gcs_bucket, serp_id=args.serp_id))
    _emit([asdict(r) for r in results])
    return 0 if all(r.storage_url for r in results) else 1


def cmd_backfill(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        results = asyncio.run(build_uploader(settings, store).backfill_storage_urls(args.bucket or settings.gcs_bucket))
    _emit([asdict(r) for r in results])
    return 0 if all(r.status != "error" for r in results) else 1


def cmd_verify(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        verification = verify_job(store, args.job_id)
    _emit({**asdict(verification), "ok": verification.ok})
    return 0 if verification.ok else 1


def cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        tracker = JobTracker(store)
        if args.job_id:
            _emit(asdict(tracker.require(args.job_id)))
        elif args.stats:
            _emit(tracker.stats())
        else:
            _emit([asdict(r) for r in tracker.list_recent(limit=args.limit)])
    return 0


def cmd_report(args: argparse.Namespace, settings: Settings) -> int:
    with store_session(settings) as store:
        page = render_serp_report(store, args.job_id, limit=args.limit)
    out = Path(args.output or Path(settings.output_dir) / f"serp-report-{args.job_id or 'latest'}.html")
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(page, encoding="utf-8")
    jlog("info", event="report_written", path=str(out))
    _emit({"report": str(out)})
    return 0


# ============================
# Parser
# ============================


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="advault", description="Collect paid-search ads and render their landing pages")
    p.add_argument("--output-dir", help="Directory for rendered files and progress (env ADVAULT_OUTPUT_DIR)")
    p.add_argument("--max-ads", type=int, help="Ads rendered per SERP (env ADVAULT_MAX_ADS)")
    p.add_argument("--local-extraction", action="store_true", default=None, help="Extract staged SERPs in-process")
    sub = p.add_subparsers(dest="command", required=True)

    def render_flags(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--no-html", action="store_true", help="Skip HTML renderings")
        sp.add_argument("--no-png", action="store_true", help="Skip PNG renderings")
        sp.add_argument("--no-upload", action="store_true", help="Keep PNGs out of blob storage")

    sp = sub.add_parser("run", help="Run one query/location through the pipeline")
    sp.add_argument("query")
    sp.add_argument("location")
    render_flags(sp)
    sp.set_defaults(handler=cmd_run)

    sp = sub.add_parser("batch", help="Run a JSON list of query/location items sequentially")
    sp.add_argument("file")
    sp.add_argument("--progress", help="Progress file (default: <output-dir>/batch-progress.json)")
    sp.add_argument("--resume", action="store_true", help="Skip items already successful in the progress file")
    sp.add_argument("--inter-item-delay", type=float, help="Seconds between items (env ADVAULT_INTER_ITEM_DELAY_S)")
    render_flags(sp)
    sp.set_defaults(handler=cmd_batch)

    sp = sub.add_parser("reset", help="Reset stuck or failed jobs to pending")
    sp.add_argument("target", choices=["job", "errors", "orphans"])
    sp.add_argument("job_id", nargs="?")
    sp.set_defaults(handler=cmd_reset)

    sp = sub.add_parser("process-staging", help="Extract pending staging rows in-process")
    sp.add_argument("--limit", type=int)
    sp.set_defaults(handler=cmd_process_staging)

    for name, handler, text in (
        ("upload", cmd_upload, "Upload PNG renderings that have no storage URL"),
        ("backfill", cmd_backfill, "Attach storage URLs for PNGs already in the bucket"),
    ):
        sp = sub.add_parser(name, help=text)
        sp.add_argument("--bucket", help="Bucket name (env GCS_BUCKET)")
        if name == "upload":
            sp.add_argument("--serp-id")
        sp.set_defaults(handler=handler)

    sp = sub.add_parser("verify", help="Check one job across staging, SERPs, ads and renderings")
    sp.add_argument("job_id")
    sp.set_defaults(handler=cmd_verify)

    sp = sub.add_parser("status", help="Show tracking rows or per-step counts")
    sp.add_argument("--job-id")
    sp.add_argument("--stats", action="store_true")
    sp.add_argument("--limit", type=int, default=20)
    sp.set_defaults(handler=cmd_status)

    sp = sub.add_parser("report", help="Write a static HTML SERP report")
    sp.add_argument("--job-id")
    sp.add_argument("--limit", type=int, default=10)
    sp.add_argument("--output")
    sp.set_defaults(handler=cmd_report)
    return p


def main(argv: list[str] | None = None) -> int:
    configure_logging()
    set_global_context(app=APP_NAME, scraper_version=get_scraper_version())
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env().with_overrides(
            output_dir=args.output_dir,
            max_ads=args.max_ads,
            local_extraction=args.local_extraction,
            inter_item_delay_s=getattr(args, "inter_item_delay", None),
        )
        with logging_context(command=args.command):
            return args.handler(args, settings)
    except ConfigurationError as exc:
        jlog("error", event="configuration_error", error=str(exc))
        print(f"configuration error: {exc}", file=sys.stderr)
        return 1
    except AdvaultError as exc:
        jlog("error", event="command_failed", command=args.command, error=str(exc), error_kind=error_kind(exc))
        print(f"{args.command} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
