"""Sandboxed code runner for code-mode custom integrations.

Each run starts a fresh interpreter (``sandbox_worker.py``) in isolated mode
with an empty environment. The worker applies resource limits, installs an
audit hook and executes the operator script. Network access is brokered: the
script's ``context.fetch`` becomes a JSON-lines message the host answers with
its own HTTP client, under a per-run request budget.
"""

import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field
from pydantic import ValidationError as ModelValidationError

from evidence_sync.core.config import Settings
from evidence_sync.core.errors import ExecutionError, ValidationError
from evidence_sync.engines.validator import validate_script
from evidence_sync.models import EndpointTestResult, EvidenceItem, ScriptValidationResult, SyncResult
from evidence_sync.utils.http import send_request

logger = logging.getLogger(__name__)

WORKER_PATH = Path(__file__).with_name("sandbox_worker.py")

LOG_PREFIX = "[custom code]"

SIGXCPU = 24
SIGKILL = 9

CODE_TEMPLATE = '''\
# Custom integration script
#
# Define sync(context) and return {"evidence": [...]}.
#
#   context.fetch(url, method="GET", headers=None, params=None, json=None)
#       Calls an API through the service. Paths starting with "/" are joined
#       to context.base_url. Returns a response with .status, .ok, .headers,
#       .text, .json() and .raise_for_status().
#   context.auth_headers / context.auth_params
#       Credentials for the configured auth type.
#   context.log.info(...), print(...)
#       Messages show up in the sync log.
#
# json, math, re and datetime helpers are available without importing.


def sync(context):
    response = context.fetch(
        "/api/v1/resources",
        headers=context.auth_headers,
        params=context.auth_params,
    )
    response.raise_for_status()
    resources = response.json()

    context.log.info("Fetched", len(resources), "resources")

    return {
        "evidence": [
            {
                "title": "Resource inventory",
                "description": "Resources collected from the API",
                "data": resources,
                "type": "automated",
            }
        ]
    }
'''


class ExecutionContext(BaseModel):
    """Values handed to ``sync(context)``; auth material is already decrypted."""

    base_url: Optional[str] = None
    auth_headers: Dict[str, str] = Field(default_factory=dict)
    auth_params: Dict[str, str] = Field(default_factory=dict)
    organization_id: Optional[str] = None
    integration_id: Optional[str] = None


class SandboxedCodeRunner:
    """Runs operator scripts in a resource-limited worker process."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        timeout: float = 30.0,
        cpu_seconds: int = 10,
        memory_mb: int = 512,
        max_requests: int = 100,
        request_timeout: float = 30.0,
        max_output_bytes: int = 16 * 1024 * 1024,
        max_script_bytes: int = 100 * 1024,
    ):
        self.http_client = http_client
        self.timeout = timeout
        self.cpu_seconds = cpu_seconds
        self.memory_mb = memory_mb
        self.max_requests = max_requests
        self.request_timeout = request_timeout
        self.max_output_bytes = max_output_bytes
        self.max_script_bytes = max_script_bytes

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> "SandboxedCodeRunner":
        return cls(
            http_client,
            timeout=settings.sandbox_timeout,
            cpu_seconds=settings.sandbox_cpu_seconds,
            memory_mb=settings.sandbox_memory_mb,
            max_requests=settings.sandbox_max_requests,
            request_timeout=settings.http_timeout,
            max_output_bytes=settings.sandbox_max_output_bytes,
            max_script_bytes=settings.sandbox_max_script_bytes,
        )

    def validate(self, code: str) -> ScriptValidationResult:
        return validate_script(code, max_bytes=self.max_script_bytes)

    async def run(self, code: str, context: ExecutionContext) -> SyncResult:
        """Execute ``sync(context)`` and return its evidence.

        Raises:
            ValidationError: the script failed static validation; nothing ran.
            ExecutionError: the script raised, returned a malformed result,
                crashed, hit a resource limit or timed out.
        """
        validation = self.validate(code)
        if not validation.valid:
            raise ValidationError("Script validation failed", errors=validation.errors)

        result = SyncResult()
        process = await asyncio.create_subprocess_exec(
            sys.executable,
            "-I",
            "-S",
            str(WORKER_PATH),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={},
            limit=self.max_output_bytes,
        )

        try:
            raw_items = await asyncio.wait_for(
                self._converse(process, code, context, result), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Custom code for {context.integration_id} timed out after {self.timeout}s")
            raise ExecutionError(f"Script timed out after {self.timeout:g} seconds")
        finally:
            await self._reap(process)

        try:
            result.evidence = [EvidenceItem.model_validate(item) for item in raw_items]
        except ModelValidationError as e:
            raise ExecutionError(f"Script returned invalid evidence: {e.error_count()} error(s)") from e

        logger.info(
            f"Custom code for {context.integration_id} produced {len(result.evidence)} evidence item(s)"
        )
        return result

    async def test(self, code: str, context: ExecutionContext) -> EndpointTestResult:
        """Run a script once and report what it would produce."""
        started = time.monotonic()
        try:
            result = await self.run(code, context)
        except ValidationError as e:
            return EndpointTestResult(
                success=False, message="Script validation failed", error="; ".join(e.errors)
            )
        except ExecutionError as e:
            return EndpointTestResult(
                success=False,
                message="Script execution failed",
                response_time=_elapsed_ms(started),
                error=str(e),
            )

        count = len(result.evidence)
        return EndpointTestResult(
            success=True,
            message=f"Script executed successfully and produced {count} evidence item(s)",
            response_time=_elapsed_ms(started),
            data={
                "evidenceCount": count,
                "preview": [item.model_dump() for item in result.evidence[:3]],
                "logs": result.logs,
            },
        )

    async def _converse(
        self,
        process: asyncio.subprocess.Process,
        code: str,
        context: ExecutionContext,
        result: SyncResult,
    ) -> List[Dict[str, Any]]:
        await self._send(process, {
            "script": code,
            "context": context.model_dump(),
            "limits": {"cpu_seconds": self.cpu_seconds, "memory_mb": self.memory_mb},
        })

        requests_made = 0
        while True:
            try:
                line = await process.stdout.readline()
            except ValueError as e:
                raise ExecutionError(
                    f"Script output exceeded {self.max_output_bytes} bytes"
                ) from e

            if not line:
                raise ExecutionError(await self._describe_exit(process))

            try:
                message = json.loads(line)
            except ValueError as e:
                raise ExecutionError("Malformed message from script worker") from e

            op = message.get("op")
            if op == "log":
                text = f"{LOG_PREFIX} {message.get('message', '')}"
                result.logs.append(text)
                logger.info(text)
            elif op == "fetch":
                requests_made += 1
                await self._send(process, await self._fetch(message, requests_made))
            elif op == "result":
                evidence = message.get("evidence")
                if not isinstance(evidence, list):
                    raise ExecutionError('sync() must return {"evidence": [...]}')
                return evidence
            elif op == "error":
                raise ExecutionError(message.get("message") or "Script failed")
            else:
                raise ExecutionError(f"Unexpected message from script worker: {op!r}")

    async def _fetch(self, message: Dict[str, Any], requests_made: int) -> Dict[str, Any]:
        """Perform one brokered request for the script."""
        request_id = message.get("id")
        if requests_made > self.max_requests:
            return _fetch_error(request_id, f"Request budget of {self.max_requests} exceeded")

        method = str(message.get("method") or "GET").upper()
        url = str(message.get("url") or "")
        try:
            parsed = httpx.URL(url)
        except (httpx.InvalidURL, TypeError) as e:
            return _fetch_error(request_id, f"Invalid URL: {e}")
        if parsed.scheme not in ("http", "https"):
            return _fetch_error(request_id, "Only http and https URLs can be fetched")

        kwargs: Dict[str, Any] = {
            "headers": message.get("headers") or {},
            "params": message.get("params") or {},
        }
        if message.get("json") is not None:
            kwargs["json"] = message["json"]
        elif message.get("data") is not None:
            data = message["data"]
            kwargs["content"] = data if isinstance(data, str) else json.dumps(data)

        logger.debug(f"Custom code fetch {method} {parsed.host}{parsed.path}")
        try:
            response = await send_request(
                self.http_client,
                method,
                url,
                timeout=self.request_timeout,
                retry_attempts=1,
                **kwargs,
            )
        except httpx.HTTPError as e:
            return _fetch_error(request_id, f"{type(e).__name__}: {e}")

        return {
            "op": "response",
            "id": request_id,
            "status": response.status_code,
            "headers": dict(response.headers),
            "text": response.text,
            "url": str(response.url),
        }

    @staticmethod
    async def _send(process: asyncio.subprocess.Process, message: Dict[str, Any]) -> None:
        try:
            process.stdin.write(json.dumps(message, default=str).encode("utf-8") + b"\n")
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise ExecutionError("Script worker exited unexpectedly") from e

    @staticmethod
    async def _describe_exit(process: asyncio.subprocess.Process) -> str:
        returncode = await process.wait()
        if returncode == -SIGXCPU:
            return "Script exceeded its CPU time limit"
        if returncode == -SIGKILL:
            return "Script worker was killed (memory or resource limit)"

        stderr = (await process.stderr.read()).decode("utf-8", errors="replace").strip()
        detail = stderr.splitlines()[-1] if stderr else "no output"
        return f"Script worker exited with code {returncode}: {detail}"

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await process.wait()


def _fetch_error(request_id: Any, message: str) -> Dict[str, Any]:
    return {"op": "fetch_error", "id": request_id, "message": message}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
