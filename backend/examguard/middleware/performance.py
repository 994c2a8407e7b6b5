import time
import logging
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Callable
import psutil

from ..core.cache import cache

perf_logger = logging.getLogger("performance")


class PerformanceMiddleware(BaseHTTPMiddleware):
    """Request timing, slow-request warnings and per-request memory delta."""

    def __init__(self, app, slow_request_threshold: float = 1.0):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        self.request_count = 0
        self.total_response_time = 0.0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        process = psutil.Process()
        memory_before = process.memory_info().rss

        self.request_count += 1
        request_id = f"req_{self.request_count}_{int(start_time)}"
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            perf_logger.error(
                f"Request error: {request.method} {request.url.path} - "
                f"Error: {str(e)} - Time: {time.time() - start_time:.3f}s"
            )
            raise

        process_time = time.time() - start_time
        self.total_response_time += process_time
        memory_delta = process.memory_info().rss - memory_before

        response.headers["X-Process-Time"] = str(round(process_time, 4))
        response.headers["X-Request-ID"] = request_id

        if process_time > self.slow_request_threshold:
            perf_logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time:.3f}s (threshold: {self.slow_request_threshold}s)"
            )
            cache.push_capped("slow_requests", {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "response_time": round(process_time, 3),
                "timestamp": start_time,
            }, limit=100, ttl=3600)

        perf_logger.info(
            f"{request.method} {request.url.path} - "
            f"{response.status_code} - {process_time:.3f}s - "
            f"Memory: {memory_delta/1024/1024:.1f}MB"
        )

        avg_response_time = self.total_response_time / self.request_count
        response.headers["X-Avg-Response-Time"] = str(round(avg_response_time, 3))
        return response
