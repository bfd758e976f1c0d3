"""
SheetChat Chat Module

- Streaming chat turns over SSE
- Turn cancellation
- Conversation history and tool-execution checkpoints
"""
