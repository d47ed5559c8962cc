from __future__ import annotations

import io
from pathlib import Path

import pytest

from classroom_runner import ExecutionOutcome
from crn import cli


class _FakeLauncher:
    def __init__(self, policy, **kwargs) -> None:  # noqa: ANN001, ANN003
        self.policy = policy
        self.kwargs = kwargs

    def cleanup_stale(self) -> int:
        return 3


class _FakeRunner:
    outcomes: list[ExecutionOutcome] = []
    calls: list[tuple[str, str]] = []

    def __init__(self, launcher, policy=None) -> None:  # noqa: ANN001
        from classroom_runner import DEFAULT_REGISTRY
        from classroom_runner.execution.workspace import WorkspacePreparer

        self.launcher = launcher
        self.registry = DEFAULT_REGISTRY
        self.preparer = WorkspacePreparer(policy.scratch_root)

    async def run(self, code: str, language: str) -> ExecutionOutcome:
        self.registry.lookup(language)
        self.__class__.calls.append((code, language))
        return self.__class__.outcomes.pop(0)


@pytest.fixture(autouse=True)
def _patch_runtime(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(cli, "DockerLauncher", _FakeLauncher)
    monkeypatch.setattr(cli, "CodeRunner", _FakeRunner)
    monkeypatch.setenv("CLASSROOM_RUNNER_CONFIG", str(_config(tmp_path)))
    _FakeRunner.outcomes = []
    _FakeRunner.calls = []


def _config(tmp_path: Path) -> Path:
    config = tmp_path / "runner.toml"
    config.write_text(f"[policy]\nscratch_root = '{tmp_path / 'scratch'}'\n", encoding="utf-8")
    return config


def test_cli_languages(capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["languages"])
    output = capsys.readouterr().out
    assert code == 0
    assert "openjdk:17" in output
    assert "javascript" in output


def test_cli_run_infers_language_from_extension(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "hello.py"
    source.write_text('print("hi")\n', encoding="utf-8")
    _FakeRunner.outcomes = [ExecutionOutcome.success("hi\n")]

    code = cli.main(["run", str(source)])
    output = capsys.readouterr().out
    assert code == 0
    assert "hi" in output
    assert _FakeRunner.calls == [('print("hi")\n', "python")]


def test_cli_run_failure_exit_status(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "script.txt"
    source.write_text("throw 1", encoding="utf-8")
    _FakeRunner.outcomes = [ExecutionOutcome.runtime_error("Uncaught 1", 1)]

    code = cli.main(["run", str(source), "--language", "javascript"])
    output = capsys.readouterr().out
    assert code == 1
    assert "Uncaught 1" in output


def test_cli_run_unknown_extension(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    source = tmp_path / "script.rb"
    source.write_text("puts 1", encoding="utf-8")
    code = cli.main(["run", str(source)])
    assert code == 2
    assert "Cannot infer language" in capsys.readouterr().out


def test_cli_run_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["run", str(tmp_path / "nope.py")])
    assert code == 2
    assert "File not found" in capsys.readouterr().out


def test_cli_cleanup(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "scratch" / "run_old").mkdir(parents=True)
    code = cli.main(["cleanup"])
    output = capsys.readouterr().out
    assert code == 0
    assert "removed_containers" in output
    assert not (tmp_path / "scratch" / "run_old").exists()


def test_cli_conflicting_docker_flags(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    from classroom_runner import DockerLauncher

    monkeypatch.setattr(cli, "DockerLauncher", DockerLauncher)
    with pytest.raises(SystemExit) as exc:
        cli.main(["--docker-context", "a", "--docker-host", "ssh://b", "cleanup"])
    assert exc.value.code == 2
    assert "either docker_context" in capsys.readouterr().out


def test_cli_top_level_help_examples(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc:
        cli.main(["--help"])
    output = capsys.readouterr().out
    assert exc.value.code == 0
    assert "Quick Examples:" in output
    assert "python -m crn serve --port 4000" in output


def test_cli_print_help_writes_to_requested_stream(capsys: pytest.CaptureFixture[str]) -> None:
    parser = cli.build_parser()
    buffer = io.StringIO()
    parser.print_help(file=buffer)
    assert capsys.readouterr().out == ""
    assert "classroom-code-runner CLI" in buffer.getvalue()


def _record_uvicorn_run(monkeypatch: pytest.MonkeyPatch) -> dict:
    import uvicorn

    calls: dict = {}

    def fake_run(app, **kwargs) -> None:  # noqa: ANN001, ANN003
        calls["app"] = app
        calls.update(kwargs)

    monkeypatch.setattr(uvicorn, "run", fake_run)
    return calls


def test_cli_serve_uses_server_table_from_env_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "env.toml"
    config.write_text(
        f"[policy]\nscratch_root = '{tmp_path / 'scratch'}'\n\n[server]\nport = 5555\nhost = '127.0.0.1'\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CLASSROOM_RUNNER_CONFIG", str(config))
    calls = _record_uvicorn_run(monkeypatch)

    code = cli.main(["serve"])
    assert code == 0
    assert calls["port"] == 5555
    assert calls["host"] == "127.0.0.1"
    assert calls["log_level"] == "info"


def test_cli_serve_flags_override_config(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = _record_uvicorn_run(monkeypatch)

    code = cli.main(["serve", "--port", "4100", "--host", "127.0.0.2"])
    assert code == 0
    assert calls["port"] == 4100
    assert calls["host"] == "127.0.0.2"
