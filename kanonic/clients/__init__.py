"""Request pipeline internals: orchestration, plugins, retry, response handling and SSE."""
