#!/usr/bin/env python3
"""
Graph and relational schema initializer.

Creates the natural-key uniqueness constraints and the per-label vector
indexes in Neo4j, then the relational tables. Safe to run repeatedly.

Usage:
    python scripts/init_graph.py
    python scripts/init_graph.py --skip-relational
"""

import argparse
import logging
import sys

from solvegraph.config_loader import get_config
from solvegraph.database import Neo4jConnection
from solvegraph.relational import RelationalStore
from solvegraph.settings import load_settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
logger = logging.getLogger("init_graph")


def main():
    parser = argparse.ArgumentParser(description="Initialize graph constraints and vector indexes")
    parser.add_argument("--skip-relational", action="store_true", help="Only touch the graph store")
    args = parser.parse_args()

    settings = load_settings()
    config = get_config()

    print(f"Connecting to Neo4j at {settings.neo4j_uri}...")
    db = Neo4jConnection(settings.neo4j_uri, settings.neo4j_user, settings.neo4j_password,
                         database=settings.neo4j_database)
    try:
        statements = db.init_schema(config.models.embedding_dimensions, config.retrieval.indexes)
    except Exception as e:
        logger.error(f"schema initialization failed: {e}")
        sys.exit(1)
    finally:
        db.close()
    print(f"  {len(statements)} graph statement(s) applied")

    if not args.skip_relational:
        store = RelationalStore(settings.database_url)
        try:
            store.create_all()
        finally:
            store.close()
        print(f"  relational tables ready at {settings.masked()['database_url']}")


if __name__ == "__main__":
    main()
