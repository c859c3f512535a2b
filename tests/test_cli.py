import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

import evvl.cli as cli
from evvl.models import CollectionKey
from evvl.storage.fs import JsonDocumentStore, JsonPromptRepo, PendingRunQueue

runner = CliRunner()


class _FakeDetector:
    detected: str | None = None

    def __init__(self, timeout: float = 2.0) -> None:
        _ = timeout

    def detect(self) -> str | None:
        return self.detected


@pytest.fixture
def home(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli, "GitContextDetector", _FakeDetector)
    monkeypatch.setattr(_FakeDetector, "detected", None)
    return tmp_path / "evvl-home"


def _invoke(home: Path, *args: str, input: str | None = None):
    return runner.invoke(cli.app, ["--home", str(home), *args], input=input)


def _store(home: Path) -> JsonDocumentStore:
    return JsonDocumentStore(home / "store.json")


def _seed_runs(home: Path, runs: list[dict]) -> None:
    _store(home).save(CollectionKey.EVALUATION_RUNS.value, runs)


def _completed_run(rid: str, created_at: int) -> dict:
    return {
        "id": rid,
        "projectId": "p1",
        "promptId": "pr1",
        "promptVersionId": "v1",
        "modelConfigIds": ["m1"],
        "results": [{"modelConfigId": "m1", "output": {"content": f"from {rid}", "tokens": 3, "latency": 20}}],
        "status": "completed",
        "createdAt": created_at,
    }


def test_version_flag() -> None:
    result = runner.invoke(cli.app, ["--version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == f"evvl {cli.__version__}"


def test_run_cli_smoke(home: Path) -> None:
    result = _invoke(home, "run", "--prompt", "I want to analyze this", "--models", "openai/gpt-4")

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["prompt"] == "I want to analyze this"
    assert payload["models"] == ["openai/gpt-4"]
    assert payload["projectId"] is None


def test_run_in_git_repo_versions_the_project_prompt(home: Path, monkeypatch) -> None:
    monkeypatch.setattr(_FakeDetector, "detected", "myrepo")

    result = _invoke(home, "--json", "run", "--prompt", "hello")

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["projectName"] == "myrepo"
    assert payload["savedVersion"] is True
    prompt = JsonPromptRepo(_store(home)).list()[0]
    assert [v.content for v in prompt.versions] == ["", "hello"]


def test_positional_words_are_the_prompt(home: Path) -> None:
    result = _invoke(home, "Explain", "this", "diff")

    assert result.exit_code == 0
    assert json.loads(result.stdout)["prompt"] == "Explain this diff"


def test_positional_prompt_with_trailing_open(home: Path) -> None:
    result = _invoke(home, "Review this code", "--open")

    assert result.exit_code == 0
    queued = PendingRunQueue(_store(home)).peek()
    assert [r.prompt for r in queued] == ["Review this code"]


def test_run_reads_piped_stdin(home: Path) -> None:
    result = _invoke(home, "run", input="  from a pipe\n")

    assert result.exit_code == 0
    assert json.loads(result.stdout)["prompt"] == "from a pipe"


def test_run_without_prompt_fails(home: Path) -> None:
    result = _invoke(home, "run")

    assert result.exit_code == 1
    assert "Error: No prompt provided" in result.output


def test_run_unknown_project_fails(home: Path) -> None:
    result = _invoke(home, "--project", "ghost", "run", "--prompt", "x")

    assert result.exit_code == 1
    assert "Error: Project 'ghost' not found" in result.output


def test_export_unknown_run(home: Path) -> None:
    _seed_runs(home, [_completed_run("r1", 1)])

    result = _invoke(home, "export", "--run", "nope")

    assert result.exit_code == 1
    assert "Error: Run ID not found" in result.output


def test_export_without_completed_runs(home: Path) -> None:
    result = _invoke(home, "export")

    assert result.exit_code == 1
    assert "Error: No evaluation runs found" in result.output


def test_export_latest_completed_as_csv(home: Path) -> None:
    _seed_runs(home, [_completed_run("old", 1), _completed_run("new", 2)])
    _store(home).save(
        CollectionKey.MODEL_CONFIGS.value,
        [{"id": "m1", "projectId": "p1", "provider": "openai", "model": "gpt-4"}],
    )

    result = _invoke(home, "export", "--format", "csv")

    assert result.exit_code == 0
    assert result.stdout.splitlines() == [
        "model,provider,content,tokens,latency,error",
        '"gpt-4","openai","from new",3,20,""',
    ]


def test_export_specific_run_as_json(home: Path) -> None:
    _seed_runs(home, [_completed_run("old", 1), _completed_run("new", 2)])

    result = _invoke(home, "export", "-r", "old")

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["id"] == "old"
    assert payload["prompt"] == "Unknown"
    assert payload["results"][0]["model"] == "unknown"


def test_projects_lists_counts(home: Path) -> None:
    _store(home).save(
        CollectionKey.PROJECTS.value,
        [{"id": "p1", "name": "myrepo", "createdAt": 1, "updatedAt": 1, "promptIds": ["a"]}],
    )

    result = _invoke(home, "projects")

    assert result.exit_code == 0
    assert json.loads(result.stdout) == [
        {"id": "p1", "name": "myrepo", "description": None, "prompts": 1, "models": 0, "datasets": 0}
    ]


def test_prompts_filtered_by_project(home: Path, monkeypatch) -> None:
    monkeypatch.setattr(_FakeDetector, "detected", "myrepo")
    assert _invoke(home, "run", "--prompt", "hello").exit_code == 0
    monkeypatch.setattr(_FakeDetector, "detected", "other")
    assert _invoke(home, "run", "--prompt", "bye").exit_code == 0

    listed = _invoke(home, "--project", "MyRepo", "prompts")
    aliased = _invoke(home, "--project", "myrepo", "prompts", "test")
    everything = _invoke(home, "prompts", "list")

    assert listed.exit_code == 0
    rows = json.loads(listed.stdout)
    assert [(r["name"], r["project"], r["current_version"]) for r in rows] == [("myrepo", "myrepo", 2)]
    assert json.loads(aliased.stdout) == rows
    assert len(json.loads(everything.stdout)) == 2


def test_prompts_unknown_project(home: Path) -> None:
    result = _invoke(home, "--project", "ghost", "prompts")

    assert result.exit_code == 1
    assert "Error: Project 'ghost' not found" in result.output


def test_pending_drain(home: Path) -> None:
    assert _invoke(home, "--open", "run", "--prompt", "later").exit_code == 0

    drained = _invoke(home, "pending", "--drain")
    after = _invoke(home, "pending")

    assert [r["prompt"] for r in json.loads(drained.stdout)] == ["later"]
    assert json.loads(after.stdout) == []


def test_settings_reports_paths(home: Path) -> None:
    result = _invoke(home, "--settings")

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["store"] == str(home / "store.json")
    assert payload["config"] == str(home / "config.yaml")


def test_invalid_config_fails(home: Path) -> None:
    home.mkdir()
    (home / "config.yaml").write_text("git_timeout: -1\n", encoding="utf-8")

    result = _invoke(home, "projects")

    assert result.exit_code == 1
    assert "Error: Invalid configuration" in result.output


def test_export_run_with_non_object_results(home: Path) -> None:
    run = _completed_run("r1", 1)
    run["results"] = [{"modelConfigId": "m"}, "weird"]
    _seed_runs(home, [run])

    result = _invoke(home, "export", "--run", "r1")

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert [r["model"] for r in payload["results"]] == ["unknown", "unknown"]


def test_settings_lists_stored_collections(home: Path) -> None:
    _seed_runs(home, [])
    _store(home).save(CollectionKey.PROJECTS.value, [])

    result = _invoke(home, "--settings")

    assert result.exit_code == 0
    assert json.loads(result.stdout)["collections"] == ["evvl_evaluation_runs", "evvl_projects_v2"]
