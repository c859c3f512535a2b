from __future__ import annotations

import csv
import io
import json
from typing import Any

from evvl.models import (
    EvaluationRun,
    ExportedResult,
    ExportedRun,
    ExportFormat,
    Project,
    ProjectModelConfig,
    ProjectSummary,
    Prompt,
    PromptSummary,
    ResolvedRun,
    RunConfig,
)
from evvl.utils import truncate

UNKNOWN = "unknown"
CSV_HEADER = ("model", "provider", "content", "tokens", "latency", "error")


def _dump(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


def _as_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


class OutputRenderer:
    def __init__(self, preview_width: int = 60) -> None:
        self.preview_width = preview_width

    def run_config(self, resolved: ResolvedRun, json_output: bool) -> str:
        config = resolved.config
        if json_output:
            return _dump(config.to_store())

        lines = [
            "Run Configuration:",
            f"  Prompt: {truncate(config.prompt, self.preview_width)}",
            f"  Models: {', '.join(config.models)}",
        ]
        if config.dataset:
            lines.append(f"  Dataset: {config.dataset}")
        if config.project_name:
            lines.append(f"  Project: {config.project_name}")
        if config.saved_version:
            lines.append("  New version saved: yes")
        lines.append("")
        lines.append("Use --open to execute in GUI.")
        return "\n".join(lines)

    def projects(self, projects: list[Project], json_output: bool) -> str:
        if json_output:
            rows = [
                ProjectSummary(
                    id=p.id,
                    name=p.name,
                    description=p.description,
                    prompts=len(p.prompt_ids),
                    models=len(p.model_config_ids),
                    datasets=len(p.data_set_ids),
                ).model_dump(mode="json")
                for p in projects
            ]
            return _dump(rows)

        if not projects:
            return (
                "No projects found.\n"
                "Create a project in the Evvl GUI first, or run 'evvl --open' to launch it."
            )
        lines = [
            f"Projects ({len(projects)}):",
            f"{'ID':<36}  {'Name':<30}  Prompts  Models  Datasets",
            "-" * 100,
        ]
        for p in projects:
            lines.append(
                f"{p.id:<36}  {truncate(p.name, 30):<30}  "
                f"{len(p.prompt_ids):>7}  {len(p.model_config_ids):>6}  {len(p.data_set_ids):>8}"
            )
        return "\n".join(lines)

    def prompts(self, prompts: list[Prompt], projects: list[Project], json_output: bool) -> str:
        names = {p.id: p.name for p in projects}
        if json_output:
            rows = []
            for prompt in prompts:
                current = prompt.current_version()
                rows.append(
                    PromptSummary(
                        id=prompt.id,
                        name=prompt.name,
                        project=names.get(prompt.project_id, "Unknown"),
                        versions=len(prompt.versions),
                        current_version=current.version_number if current else 0,
                    ).model_dump(mode="json")
                )
            return _dump(rows)

        if not prompts:
            return "No prompts found."
        lines = [
            f"Prompts ({len(prompts)}):",
            f"{'ID':<36}  {'Name':<25}  {'Project':<20}  Versions",
            "-" * 95,
        ]
        for prompt in prompts:
            project_name = names.get(prompt.project_id, "Unknown")
            lines.append(
                f"{prompt.id:<36}  {truncate(prompt.name, 25):<25}  "
                f"{truncate(project_name, 20):<20}  {len(prompt.versions):>8}"
            )
        return "\n".join(lines)

    def export_run(
        self,
        run: EvaluationRun,
        prompts: list[Prompt],
        model_configs: list[ProjectModelConfig],
        fmt: ExportFormat,
    ) -> str:
        exported = self._exported_run(run, prompts, model_configs)
        if fmt == ExportFormat.CSV:
            return self._csv(exported)
        return _dump(exported.model_dump(mode="json", by_alias=True))

    def pending(self, runs: list[RunConfig], json_output: bool) -> str:
        if json_output:
            return _dump([r.to_store() for r in runs])
        if not runs:
            return "No pending runs."
        lines = [f"Pending runs ({len(runs)}):"]
        for run in runs:
            project = run.project_name or "-"
            models = ", ".join(f"{ref.model} ({ref.provider})" for ref in run.model_refs())
            lines.append(f"  {truncate(run.prompt, 40):<40}  project={project}  models={models}")
        return "\n".join(lines)

    def _exported_run(
        self,
        run: EvaluationRun,
        prompts: list[Prompt],
        model_configs: list[ProjectModelConfig],
    ) -> ExportedRun:
        version = None
        for prompt in prompts:
            if prompt.id == run.prompt_id:
                version = next((v for v in prompt.versions if v.id == run.prompt_version_id), None)
                break
        configs = {c.id: c for c in model_configs}

        results: list[ExportedResult] = []
        for result in run.results:
            if not isinstance(result, dict):
                result = {}
            config = configs.get(_as_str(result.get("modelConfigId")) or "")
            output = result.get("output")
            if not isinstance(output, dict):
                output = {}
            results.append(
                ExportedResult(
                    model=config.model if config else UNKNOWN,
                    provider=config.provider if config else UNKNOWN,
                    content=_as_str(output.get("content")),
                    tokens=_as_int(output.get("tokens")),
                    latency=_as_int(output.get("latency")),
                    error=_as_str(output.get("error")) or _as_str(result.get("error")),
                    data_set_item=_as_str(result.get("dataSetItemId")),
                )
            )

        return ExportedRun(
            id=run.id,
            timestamp=run.created_at,
            prompt=version.content if version else "Unknown",
            system_prompt=version.system_prompt if version else None,
            status=run.status,
            results=results,
        )

    def _csv(self, exported: ExportedRun) -> str:
        buf = io.StringIO()
        buf.write(",".join(CSV_HEADER) + "\n")
        # Text columns are always quoted; numbers are written bare.
        writer = csv.writer(buf, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
        for r in exported.results:
            writer.writerow(
                [r.model, r.provider, r.content or "", r.tokens or 0, r.latency or 0, r.error or ""]
            )
        return buf.getvalue().rstrip("\n")
