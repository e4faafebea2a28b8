"""
Core Application Layer - Relay Orchestration and Configuration
==============================================================

Provides the business logic that turns one inbound chat message into an
ordered, framed stream of outbound fragments.

Modules:
    constants: Configuration values, message types and Pydantic settings validation
    errors: Relay exception taxonomy with sanitized user messages
    prompts: System prompt and action instructions
    session_registry: Concurrency-safe ownership of per-connection sessions
    call_parser: Tagged parse results and the streaming inline-call detector
    interpreter: Validation and execution of function calls against the action table
    relay: Per-message state machine (start, tokens, end) with interrupt support
"""
