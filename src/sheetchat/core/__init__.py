"""
SheetChat Core - spreadsheet chat engine

The core knows nothing about HTTP. Components:
- table_store: in-memory files and typed sheets with read leases
- ingest: bytes to typed sheets, content hashing
- tool_registry: catalog of plugin functions, fail-closed validation
- schema_validator: JSON-schema contract checks
- query_engine: executes one validated operation against the store
- dedup: content-hash duplicate detection and removal
- conversation: messages, tool calls, per-conversation turn lock
- llm: provider-neutral model client (Gemini implementation)
- orchestrator: the tool-calling loop for one turn
- streaming: event channel and wire projection
- checkpoint_logger: immutable log of tool executions
"""
