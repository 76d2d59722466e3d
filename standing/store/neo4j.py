"""
Standing Engine — Neo4j driver

Neo4j only holds the standing history graph (standing.store.history). The
document store stays authoritative, so nothing here is on the write path of a
standing change.
"""
from contextlib import contextmanager

from neo4j import GraphDatabase
from neo4j.exceptions import Neo4jError, ServiceUnavailable
import structlog

from standing.config import settings

logger = structlog.get_logger()

_driver = None

SCHEMA = (
    "CREATE CONSTRAINT standing_user IF NOT EXISTS FOR (u:User) REQUIRE u.user_id IS UNIQUE",
    "CREATE CONSTRAINT standing_record IF NOT EXISTS FOR (s:StandingRecord) REQUIRE s.record_id IS UNIQUE",
    "CREATE CONSTRAINT transition_record IF NOT EXISTS FOR (t:TransitionRecord) REQUIRE t.record_id IS UNIQUE",
    "CREATE INDEX standing_record_user IF NOT EXISTS FOR (s:StandingRecord) ON (s.user_id, s.calculated_at)",
    "CREATE INDEX standing_record_status IF NOT EXISTS FOR (s:StandingRecord) ON (s.safety_status)",
    "CREATE INDEX transition_user_kind IF NOT EXISTS FOR (t:TransitionRecord) ON (t.user_id, t.kind)",
)


def get_driver():
    global _driver
    if _driver is None:
        _driver = GraphDatabase.driver(
            settings.NEO4J_URI,
            auth=(settings.NEO4J_USER, settings.NEO4J_PASSWORD),
        )
        logger.info("neo4j_connected", uri=settings.NEO4J_URI, database=settings.NEO4J_DATABASE)
    return _driver


@contextmanager
def get_session():
    """Session on the history database, closed on exit."""
    with get_driver().session(database=settings.NEO4J_DATABASE) as session:
        yield session


def ping() -> bool:
    try:
        get_driver().verify_connectivity()
        return True
    except (Neo4jError, ServiceUnavailable, OSError) as e:
        logger.warning("neo4j_unreachable", error=str(e))
        return False


def init_schema() -> int:
    """Create history constraints and indexes. Returns how many statements applied."""
    applied = 0
    with get_session() as session:
        for statement in SCHEMA:
            try:
                session.run(statement).consume()
                applied += 1
            except Neo4jError as e:
                logger.warning("schema_statement_failed", statement=statement[:60], error=str(e))
    logger.info("schema_initialized", applied=applied, total=len(SCHEMA))
    return applied


def close():
    global _driver
    if _driver is not None:
        _driver.close()
        _driver = None
        logger.info("neo4j_disconnected")
