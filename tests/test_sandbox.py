"""Tests for the sandboxed code runner.

These start a real worker interpreter for every run.
"""

import httpx
import pytest

from evidence_sync.core.errors import ExecutionError, ValidationError
from evidence_sync.engines import ExecutionContext, SandboxedCodeRunner
from evidence_sync.models import ScriptValidationResult

USERS = [{"id": 1, "mfa": True}, {"id": 2, "mfa": False}]


def vendor_api(request):
    if request.url.path == "/users":
        if request.headers.get("Authorization") != "Bearer t-1":
            return httpx.Response(401, json={"error": "unauthorized"})
        return httpx.Response(200, json=USERS)
    return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def runner():
    client = httpx.AsyncClient(transport=httpx.MockTransport(vendor_api))
    return SandboxedCodeRunner(client, timeout=15.0, cpu_seconds=10, max_requests=5)


@pytest.fixture
def context():
    return ExecutionContext(
        base_url="https://api.vendor.test",
        auth_headers={"Authorization": "Bearer t-1"},
        organization_id="org-1",
        integration_id="int-1",
    )


class TestRun:
    """Successful script runs."""

    @pytest.mark.asyncio
    async def test_returns_evidence(self, runner, context):
        code = (
            "def sync(context):\n"
            "    return {'evidence': [{'title': 'Static', 'data': {'n': 1}}]}\n"
        )
        result = await runner.run(code, context)

        assert len(result.evidence) == 1
        item = result.evidence[0]
        assert item.title == "Static"
        assert item.data == {"n": 1}
        assert item.type == "automated"

    @pytest.mark.asyncio
    async def test_bare_list_is_accepted(self, runner, context):
        code = "def sync(context):\n    return [{'title': 'A'}, {'title': 'B'}]\n"
        result = await runner.run(code, context)
        assert [item.title for item in result.evidence] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_async_sync(self, runner, context):
        code = "async def sync(context):\n    return [{'title': 'Async'}]\n"
        result = await runner.run(code, context)
        assert result.evidence[0].title == "Async"

    @pytest.mark.asyncio
    async def test_fetch_through_host(self, runner, context):
        code = (
            "def sync(context):\n"
            "    response = context.fetch('/users', headers=context.auth_headers)\n"
            "    response.raise_for_status()\n"
            "    users = response.json()\n"
            "    without_mfa = [u for u in users if not u['mfa']]\n"
            "    print('checked', len(users), 'users')\n"
            "    context.log.warning('missing mfa:', len(without_mfa))\n"
            "    return {'evidence': [{'title': 'MFA report', 'data': without_mfa}]}\n"
        )
        result = await runner.run(code, context)

        assert result.evidence[0].data == [{"id": 2, "mfa": False}]
        assert "[custom code] checked 2 users" in result.logs
        assert "[custom code] missing mfa: 1" in result.logs

    @pytest.mark.asyncio
    async def test_helpers_are_available(self, runner, context):
        code = (
            "def sync(context):\n"
            "    stamp = datetime.date(2024, 1, 2).isoformat()\n"
            "    parsed = json.loads(json.dumps({'root': math.sqrt(16)}))\n"
            "    found = re.findall(r'\\d+', 'a1b22')\n"
            "    return [{'title': stamp, 'data': {'parsed': parsed, 'found': found}}]\n"
        )
        result = await runner.run(code, context)

        assert result.evidence[0].title == "2024-01-02"
        assert result.evidence[0].data == {"parsed": {"root": 4.0}, "found": ["1", "22"]}


class TestFailures:
    """Scripts that fail, misbehave or are rejected."""

    @pytest.mark.asyncio
    async def test_invalid_script_never_runs(self, runner, context):
        with pytest.raises(ValidationError) as exc_info:
            await runner.run("import os\n\ndef sync(context):\n    return []\n", context)
        assert any("import" in error for error in exc_info.value.errors)

    @pytest.mark.asyncio
    async def test_script_exception(self, runner, context):
        code = "def sync(context):\n    raise ValueError('vendor exploded')\n"
        with pytest.raises(ExecutionError, match="ValueError: vendor exploded"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_http_error_surfaces(self, runner, context):
        code = (
            "def sync(context):\n"
            "    context.fetch('/users').raise_for_status()\n"
            "    return []\n"
        )
        with pytest.raises(ExecutionError, match="HTTP 401"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_item_without_title(self, runner, context):
        code = "def sync(context):\n    return [{'data': 1}]\n"
        with pytest.raises(ExecutionError, match="missing a title"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_wrong_return_shape(self, runner, context):
        code = "def sync(context):\n    return 'done'\n"
        with pytest.raises(ExecutionError, match="must return"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_timeout(self, context):
        client = httpx.AsyncClient(transport=httpx.MockTransport(vendor_api))
        runner = SandboxedCodeRunner(client, timeout=1.5, cpu_seconds=30)
        code = "def sync(context):\n    while True:\n        pass\n"

        with pytest.raises(ExecutionError, match="timed out"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_request_budget(self, context):
        client = httpx.AsyncClient(transport=httpx.MockTransport(vendor_api))
        runner = SandboxedCodeRunner(client, timeout=15.0, max_requests=1)
        code = (
            "def sync(context):\n"
            "    context.fetch('/users')\n"
            "    context.fetch('/users')\n"
            "    return []\n"
        )
        with pytest.raises(ExecutionError, match="Request budget of 1 exceeded"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_only_http_urls(self, runner, context):
        code = (
            "def sync(context):\n"
            "    context.fetch('file:///etc/passwd')\n"
            "    return []\n"
        )
        with pytest.raises(ExecutionError, match="Only http and https"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_reflection_cannot_reach_the_filesystem(self, runner, context, monkeypatch):
        monkeypatch.setattr(runner, "validate", lambda code: ScriptValidationResult(valid=True))
        code = (
            "def sync(context):\n"
            "    worker = context.log.__class__.__init__.__globals__\n"
            "    return [{'title': str(worker['os'].listdir('/'))}]\n"
        )
        with pytest.raises(ExecutionError, match="not allowed"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_reflection_cannot_spawn_processes(self, runner, context, monkeypatch):
        monkeypatch.setattr(runner, "validate", lambda code: ScriptValidationResult(valid=True))
        code = (
            "def sync(context):\n"
            "    worker = context.log.__class__.__init__.__globals__\n"
            "    worker['os'].system('id')\n"
            "    return []\n"
        )
        with pytest.raises(ExecutionError, match="not allowed"):
            await runner.run(code, context)

    @pytest.mark.asyncio
    async def test_restricted_builtins(self, runner, context, monkeypatch):
        monkeypatch.setattr(runner, "validate", lambda code: ScriptValidationResult(valid=True))
        code = "def sync(context):\n    open('/etc/hostname')\n    return []\n"
        with pytest.raises(ExecutionError, match="NameError"):
            await runner.run(code, context)


class TestScriptTest:
    """Dry runs used by the editor."""

    @pytest.mark.asyncio
    async def test_preview(self, runner, context):
        code = (
            "def sync(context):\n"
            "    print('building')\n"
            "    return [{'title': 'Item %d' % i} for i in range(5)]\n"
        )
        result = await runner.test(code, context)

        assert result.success is True
        assert result.data["evidenceCount"] == 5
        assert [item["title"] for item in result.data["preview"]] == ["Item 0", "Item 1", "Item 2"]
        assert result.data["logs"] == ["[custom code] building"]

    @pytest.mark.asyncio
    async def test_validation_failure(self, runner, context):
        result = await runner.test("def other():\n    pass\n", context)
        assert result.success is False
        assert result.message == "Script validation failed"
        assert "sync" in result.error

    @pytest.mark.asyncio
    async def test_execution_failure(self, runner, context):
        result = await runner.test("def sync(context):\n    return 1 / 0\n", context)
        assert result.success is False
        assert result.message == "Script execution failed"
        assert "ZeroDivisionError" in result.error
