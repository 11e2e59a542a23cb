#!/usr/bin/env python3
"""
Reconciliation sweep: re-publish graph jobs for stored analysis records.

Use after a queue outage or a permanently failed delivery left the knowledge
graph behind the relational store. Graph application merges on natural keys,
so re-publishing a record that is already projected changes nothing.

Usage:
    python scripts/republish_jobs.py                  # every record
    python scripts/republish_jobs.py --user <userId>  # one user
    python scripts/republish_jobs.py --dry-run        # list, don't publish
"""

import argparse
import logging
import sys

from solvegraph.config_loader import get_config
from solvegraph.errors import PublishError
from solvegraph.publisher import JobPublisher, build_graph_job
from solvegraph.relational import RelationalStore
from solvegraph.settings import load_settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger("republish_jobs")


def republish(store: RelationalStore, publisher: JobPublisher, user_id: str = None,
              dry_run: bool = False) -> tuple[int, int]:
    """Publish one graph job per record. Returns (published, failed)."""
    published = failed = 0
    for record in store.iter_records(user_id=user_id):
        job = build_graph_job(
            record["user_id"], record["url"], record["name"], record["domain"], record["approach_name"],
        )
        if dry_run:
            print(f"  would publish {job.user_id} {job.problem.url} ({job.problem.approach_name})")
            published += 1
            continue
        try:
            publisher.publish_graph_job(job)
            published += 1
        except PublishError as e:
            failed += 1
            logger.error(f"publish failed for {job.user_id} {job.problem.url}: {e}")
    return published, failed


def main():
    parser = argparse.ArgumentParser(description="Re-publish graph jobs from relational records")
    parser.add_argument("--user", type=str, default=None, help="Only records of this user id")
    parser.add_argument("--dry-run", action="store_true", help="List the jobs without publishing")
    args = parser.parse_args()

    settings = load_settings()
    config = get_config()
    store = RelationalStore(settings.database_url)
    publisher = JobPublisher(
        settings.qstash_url,
        settings.qstash_token,
        settings.public_base_url,
        graph_writer_path=config.queue.graph_writer_path,
        db_writer_path=config.queue.db_writer_path,
        retries=config.queue.retries,
    )
    try:
        published, failed = republish(store, publisher, user_id=args.user, dry_run=args.dry_run)
    finally:
        store.close()

    print(f"{'Listed' if args.dry_run else 'Published'} {published} job(s), {failed} failed")
    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
