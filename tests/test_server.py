from __future__ import annotations

import shlex
import sys
from pathlib import Path

from fastapi.testclient import TestClient

from classroom_runner import (
    CapacityError,
    CodeRunner,
    ExecutionOutcome,
    LanguageProfile,
    LanguageRegistry,
    LocalLauncher,
    SandboxPolicy,
    ServerSettings,
)
from classroom_runner.execution.types import TIMEOUT_MESSAGE
from classroom_runner.server import create_app


class _FakeRunner(CodeRunner):
    def __init__(self, outcome: ExecutionOutcome | None = None, error: Exception | None = None) -> None:
        super().__init__(LocalLauncher())
        self.outcome = outcome
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def run(self, code: str, language: str) -> ExecutionOutcome:
        self.validate(code, language)
        self.calls.append((code, language))
        if self.error is not None:
            raise self.error
        assert self.outcome is not None
        return self.outcome


def _client(runner: CodeRunner) -> TestClient:
    return TestClient(create_app(runner, ServerSettings(cors_origins=["http://localhost:3000"])))


def test_run_returns_output() -> None:
    runner = _FakeRunner(ExecutionOutcome.success("hi\n"))
    response = _client(runner).post("/api/run", json={"code": 'print("hi")', "language": "python"})
    assert response.status_code == 200
    assert response.json() == {"output": "hi\n"}
    assert runner.calls == [('print("hi")', "python")]


def test_run_accepts_language_id_alias() -> None:
    runner = _FakeRunner(ExecutionOutcome.success("1\n"))
    response = _client(runner).post("/api/run", json={"code": "console.log(1)", "languageId": "javascript"})
    assert response.status_code == 200
    assert runner.calls == [("console.log(1)", "javascript")]


def test_timeout_is_reported_as_output() -> None:
    runner = _FakeRunner(ExecutionOutcome.timeout(3))
    response = _client(runner).post("/api/run", json={"code": "while True: pass", "language": "python"})
    assert response.status_code == 200
    assert response.json() == {"output": TIMEOUT_MESSAGE}


def test_unknown_language_is_bad_request() -> None:
    runner = _FakeRunner(ExecutionOutcome.success(""))
    response = _client(runner).post("/api/run", json={"code": "x", "language": "bogus"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid code or language"}
    assert runner.calls == []


def test_missing_fields_are_bad_request() -> None:
    runner = _FakeRunner(ExecutionOutcome.success(""))
    response = _client(runner).post("/api/run", json={})
    assert response.status_code == 400


def test_capacity_is_service_unavailable() -> None:
    runner = _FakeRunner(error=CapacityError("All 4 sandbox slots are busy; try again later"))
    response = _client(runner).post("/api/run", json={"code": "print(1)", "language": "python"})
    assert response.status_code == 503
    assert "busy" in response.json()["error"]


def test_health() -> None:
    response = _client(_FakeRunner()).get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert "T" in body["timestamp"]


def test_non_string_code_is_bad_request() -> None:
    runner = _FakeRunner(ExecutionOutcome.success(""))
    response = _client(runner).post("/api/run", json={"code": 123, "language": "python"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid code or language"}
    assert runner.calls == []


def test_malformed_json_is_bad_request() -> None:
    runner = _FakeRunner(ExecutionOutcome.success(""))
    response = _client(runner).post(
        "/api/run",
        content="not json",
        headers={"content-type": "application/json"},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid code or language"}
    assert runner.calls == []


def test_run_executes_code_on_host_backend(tmp_path: Path) -> None:
    registry = LanguageRegistry(
        [LanguageProfile("python", "py", "unused", f"{shlex.quote(sys.executable)} {{file}}")]
    )
    policy = SandboxPolicy(timeout_seconds=10, scratch_root=str(tmp_path / "scratch"))
    runner = CodeRunner(LocalLauncher(policy), policy=policy, registry=registry)

    response = _client(runner).post("/api/run", json={"code": 'print("hi")', "language": "python"})
    assert response.status_code == 200
    assert response.json() == {"output": "hi\n"}
    assert list((tmp_path / "scratch").iterdir()) == []
