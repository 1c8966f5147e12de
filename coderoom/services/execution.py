# coderoom/services/execution.py

from __future__ import annotations

import logging
from typing import Optional

import httpx

from coderoom.models.models import ExecutionResult

logger = logging.getLogger(__name__)

PISTON_URL = "https://emkc.org/api/v2/piston/execute"


class ExecutionGateway:
    """
    Client for a Piston-compatible code execution engine.

    Request body:
        {"language": "python", "version": "*", "files": [{"content": "..."}]}

    A version of "*" asks the engine for the latest runtime it has for the
    language.

    Failures never raise: network errors, timeouts, non-2xx answers and
    engine-side error messages all come back as an ExecutionResult with
    ``error`` set, so callers can push them through the same channel as
    ordinary output.
    """

    def __init__(
        self,
        url: str = PISTON_URL,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    def build_payload(self, code: str, language: str, version: str = "*") -> dict:
        return {
            "language": language,
            "version": version or "*",
            "files": [{"content": code}],
        }

    async def execute(self, code: str, language: str, version: str = "*") -> ExecutionResult:
        payload = self.build_payload(code, language, version)

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(self.url, json=payload)
            except httpx.HTTPError as e:
                logger.error("Execution engine unreachable: %s", e)
                return _failure(f"Execution engine unreachable: {e}")

        try:
            result = response.json()
        except ValueError:
            result = {}

        if response.status_code >= 400:
            message = result.get("message") if isinstance(result, dict) else None
            logger.warning("Execution engine answered %s: %s", response.status_code, message)
            return _failure(message or f"Execution engine error (HTTP {response.status_code})")

        if not isinstance(result, dict) or "run" not in result:
            message = result.get("message") if isinstance(result, dict) else None
            return _failure(message or "Execution engine returned no result")

        return ExecutionResult(output=extract_output(result))


def extract_output(result: dict) -> str:
    """
    Pick the text to show from a Piston response.

    A failed compile stage wins over the run stage, which never ran.
    """
    compile_stage = result.get("compile") or {}
    if compile_stage.get("code") not in (None, 0):
        return compile_stage.get("output") or ""
    return (result.get("run") or {}).get("output") or ""


def _failure(message: str) -> ExecutionResult:
    return ExecutionResult(output=message, error=message)
