"""
Integrations Module - External Systems
======================================

Adapters for the two external systems the relay talks to.

Modules:
    generation_client: Streaming chat completions from an OpenAI compatible backend
        (Ollama by default), with pre-content retries and a per-call deadline
    record_store: Assistance request store protocol with PostgreSQL (asyncpg)
        and in-memory implementations

Both adapters translate their library's exceptions into the relay error
taxonomy in core.errors, so callers never handle openai or asyncpg errors.
"""
