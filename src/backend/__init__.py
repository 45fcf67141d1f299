"""
Legal MCP Server - Streaming legal document analysis over the Model Context Protocol
===================================================================================

FastAPI backend exposing a catalogue of legal-analysis prompts and a document store
to MCP clients, with progress streamed while the model analyses a document.

Key Features:
    - **Streamable HTTP transport**: JSON-RPC over POST, server-sent events for progress
    - **Session registry**: One live session per identifier, idle timeout, graceful shutdown
    - **Streamed analysis**: Section-aware progress notifications while the model generates
    - **Prompt catalogue**: Shared prompt library in object storage, user contributions
    - **Enterprise Logging**: Structured JSON logs with rotation and session correlation

Modules:
    api: FastAPI routes, protocol sessions, services and middleware
    core: Configuration, constants and the stream classifier
    tools: Tool catalogue exposed to MCP clients
    models: Pydantic models for protocol messages, analysis events and errors
    utils: Logging, metrics and client factory
    integrations: Streaming inference client
"""
