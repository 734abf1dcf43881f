"""Request timeout configuration and middleware."""

import asyncio
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce request timeouts."""

    def __init__(self, app, timeout: int = 60):
        """
        Initialize timeout middleware.

        Args:
            app: FastAPI application
            timeout: Request timeout in seconds (default: 60)
        """
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next):
        """Process request with timeout."""
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={
                    "success": False,
                    "error": {
                        "code": "TIMEOUT",
                        "message": f"Request timeout after {self.timeout} seconds",
                    },
                },
            )


# Timeout configurations (seconds)
REQUEST_TIMEOUT = 120  # whole HTTP request
CHAT_TURN_TIMEOUT = 90  # one chat turn: triage + dispatch + persistence
LLM_CALL_TIMEOUT = 45  # one model call
TRIAGE_TIMEOUT = 10  # classification call
TOOL_EXECUTION_TIMEOUT = 30  # one tool execution
