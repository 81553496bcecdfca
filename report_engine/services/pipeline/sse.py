import json

from report_engine.schemas.report import StreamEvent

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: StreamEvent) -> str:
    """Format a stream event as a raw SSE message."""
    return f"data: {json.dumps(event.to_payload())}\n\n"
