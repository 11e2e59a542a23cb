import logging
from typing import Callable, Optional

from neo4j import GraphDatabase
from neo4j.exceptions import ServiceUnavailable, SessionExpired

logger = logging.getLogger(__name__)

# Vector index name per node label; all indexes live on the `embedding` property
VECTOR_INDEXES = {
    "Problem": "problemEmbeddings",
    "Approach": "approachEmbeddings",
    "Concept": "conceptEmbeddings",
}

# Natural keys: nodes are only ever merged on these properties
NATURAL_KEYS = {
    "User": "userId",
    "Problem": "url",
    "Approach": "name",
    "Concept": "name",
    "ChatSession": "id",
}


class Neo4jConnection:
    def __init__(self, uri: str, user: str, password: str, database: str = "neo4j"):
        self.uri = uri
        self.user = user
        self.password = password
        self.database = database
        self.driver = None

    def connect(self):
        if not self.driver:
            self.driver = GraphDatabase.driver(
                self.uri,
                auth=(self.user, self.password),
                max_connection_lifetime=3600,
                max_connection_pool_size=50,
                connection_acquisition_timeout=30,
                keep_alive=True,
            )
        return self.driver

    def warmup(self) -> bool:
        """Pre-connect the pool. Call on server start; failure is logged, not raised."""
        try:
            self.verify_connection()
            logger.info("Neo4j connection ready")
            return True
        except Exception as e:
            logger.warning(f"Neo4j warmup failed: {e}")
            return False

    def reconnect(self):
        """Force reconnection by closing existing driver and creating new one."""
        if self.driver:
            try:
                self.driver.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing stale driver: {e}")
            self.driver = None
        return self.connect()

    def close(self):
        if self.driver:
            self.driver.close()
            self.driver = None

    def _execute_with_retry(self, query_func: Callable, max_retries: int = 2):
        """Execute a query function, reconnecting on a stale or unavailable connection."""
        last_error = None
        for attempt in range(max_retries + 1):
            try:
                return query_func()
            except (ServiceUnavailable, SessionExpired) as e:
                last_error = e
                if attempt < max_retries:
                    logger.warning(f"Neo4j connection lost ({e}); reconnecting")
                    self.reconnect()
                else:
                    raise
        raise last_error

    # =========================================================================
    # QUERY PRIMITIVES
    # =========================================================================

    def run_read(self, cypher: str, params: Optional[dict] = None) -> list[dict]:
        """Run a read transaction and return every record as a dict."""
        def _work(tx):
            return [record.data() for record in tx.run(cypher, params or {})]

        def _query():
            with self.connect().session(database=self.database) as session:
                return session.execute_read(_work)
        return self._execute_with_retry(_query)

    def run_write(self, cypher: str, params: Optional[dict] = None, retry: bool = True) -> dict:
        """Run one statement in a write transaction and return its update counters.

        With ``retry=False`` a lost connection is raised to the caller instead of
        being retried after a reconnect.
        """
        def _work(tx):
            counters = tx.run(cypher, params or {}).consume().counters
            return {
                "nodes_created": counters.nodes_created,
                "nodes_deleted": counters.nodes_deleted,
                "relationships_created": counters.relationships_created,
                "relationships_deleted": counters.relationships_deleted,
                "properties_set": counters.properties_set,
            }

        def _query():
            with self.connect().session(database=self.database) as session:
                return session.execute_write(_work)
        if not retry:
            return _query()
        return self._execute_with_retry(_query)

    def verify_connection(self) -> bool:
        """Verify the connection with a trivial round trip."""
        def _query():
            with self.connect().session(database=self.database) as session:
                return session.run("RETURN 1 AS test").single()["test"] == 1
        return self._execute_with_retry(_query)

    # =========================================================================
    # SCHEMA
    # =========================================================================

    def init_schema(self, dimensions: int, indexes: Optional[dict] = None) -> list[str]:
        """Create uniqueness constraints on natural keys and the vector indexes.

        Idempotent: every statement uses IF NOT EXISTS.
        """
        statements = [
            f"CREATE CONSTRAINT IF NOT EXISTS FOR (n:{label}) REQUIRE n.{key} IS UNIQUE"
            for label, key in NATURAL_KEYS.items()
        ]
        for label, index_name in (indexes or VECTOR_INDEXES).items():
            statements.append(f"""
                CREATE VECTOR INDEX {index_name} IF NOT EXISTS
                FOR (n:{label}) ON (n.embedding)
                OPTIONS {{indexConfig: {{
                    `vector.dimensions`: {int(dimensions)},
                    `vector.similarity_function`: 'cosine'
                }}}}
            """)

        def _query():
            with self.connect().session(database=self.database) as session:
                for statement in statements:
                    session.run(statement)
            return True
        self._execute_with_retry(_query)
        logger.info(f"Graph schema ready ({len(statements)} statements)")
        return statements

    # =========================================================================
    # USER SUBGRAPH (graph view)
    # =========================================================================

    def get_user_graph(self, user_id: str) -> dict:
        """Nodes and links reachable from one user, without embedding vectors."""
        rows = self.run_read("""
            MATCH (u:User {userId: $userId})-[:SUBMITTED]->(p:Problem)
            OPTIONAL MATCH (p)-[:SOLVED_WITH]->(a:Approach)
            OPTIONAL MATCH (a)-[:BELONGS_TO]->(c:Concept)
            RETURN elementId(u) AS user_eid, u.userId AS user_name,
                   elementId(p) AS problem_eid, p.name AS problem_name, p.url AS problem_url,
                   elementId(a) AS approach_eid, a.name AS approach_name,
                   elementId(c) AS concept_eid, c.name AS concept_name
        """, {"userId": user_id})

        nodes: dict[str, dict] = {}
        links: dict[tuple, dict] = {}

        def _node(eid, label, name, url=None):
            if eid and eid not in nodes:
                node = {"id": eid, "label": label, "name": name or ""}
                if url:
                    node["url"] = url
                nodes[eid] = node

        def _link(source, target, label):
            if source and target:
                links.setdefault((source, target, label), {"source": source, "target": target, "label": label})

        for row in rows:
            _node(row["user_eid"], "User", row["user_name"])
            _node(row["problem_eid"], "Problem", row["problem_name"], row.get("problem_url"))
            _node(row.get("approach_eid"), "Approach", row.get("approach_name"))
            _node(row.get("concept_eid"), "Concept", row.get("concept_name"))
            _link(row["user_eid"], row["problem_eid"], "SUBMITTED")
            _link(row["problem_eid"], row.get("approach_eid"), "SOLVED_WITH")
            _link(row.get("approach_eid"), row.get("concept_eid"), "BELONGS_TO")

        return {"nodes": list(nodes.values()), "links": list(links.values())}
