"""
Models Module - Data Models and Type Definitions
=================================================

Pydantic v2 models shared across the relay.

Modules:
    session_models: Session, Turn, StreamFragment and SessionContext
    action_models: Function calls, parse results and assistance request records
    error_models: Error codes and the WebSocket error frame
    event_models: Inbound frame parsing and outbound frame shapes
"""
