"""
Utils Module - Infrastructure Utilities
=======================================

Modules:
    logger: Structured logging (coloured console, JSON Lines files with rotation,
        request-context enrichment, PII redaction)
    client_factory: httpx and AsyncOpenAI client construction
    db_utils: asyncpg pool creation, retry decorator and health checks
"""
