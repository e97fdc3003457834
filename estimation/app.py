"""Composition root: builds an EstimationService from the configuration."""

from __future__ import annotations

import logging

from estimation.adapters.outbound.evenements import (
    FileEvenements,
    LoggingEventSink,
    PublicationSynchrone,
    SqlAlchemyAuditSink,
)
from estimation.adapters.outbound.redis_cache import creer_cache
from estimation.config import Config, load_config
from estimation.data.db import get_engine, get_session_factory, init_db
from estimation.engine.designations import MoteurDesignations
from estimation.engine.identifier_space import IdentifierSpaceArbiter
from estimation.engine.locking import creer_verrou
from estimation.engine.operations import EstimationService

logger = logging.getLogger(__name__)


def creer_service(config: Config | None = None, engine=None) -> EstimationService:
    config = config or load_config()
    if engine is None:
        engine = get_engine(config.database_url)
    init_db(engine)
    session_factory = get_session_factory(engine)

    verrou = creer_verrou(config.lock_backend, engine.dialect.name, config.lock_timeout_seconds)

    sinks = [LoggingEventSink()]
    if config.events_audit_table:
        sinks.append(SqlAlchemyAuditSink(session_factory))
    publisher = FileEvenements(sinks) if config.events_async else PublicationSynchrone(sinks)

    cache = creer_cache(config.redis_url) if config.cache_enabled else None

    logger.debug(
        "Service construit: dialecte=%s verrou=%s cache=%s",
        engine.dialect.name, type(verrou).__name__, cache is not None,
    )
    return EstimationService(
        session_factory,
        verrou,
        arbitre=IdentifierSpaceArbiter(config.arbiter_max_attempts),
        designations=MoteurDesignations(verrou, config.designation_max_attempts),
        publisher=publisher,
        cache=cache,
        cache_ttl=config.cache_ttl,
    )
