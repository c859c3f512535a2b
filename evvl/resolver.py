from __future__ import annotations

import logging
from typing import Any, Callable

from evvl.context import GitContextDetector
from evvl.errors import CorruptPrompt, NoPromptProvided, ProjectNotFound, PromptNotFound, StoreIOError
from evvl.models import (
    DEFAULT_MODELS,
    DataSet,
    Project,
    ProjectModelConfig,
    Prompt,
    PromptVersion,
    ResolvedRun,
    RunConfig,
    RunRequest,
)
from evvl.storage.interfaces import NamedCollectionRepo, ProjectScopedRepo, RunQueue
from evvl.utils import new_id, now_ms

logger = logging.getLogger(__name__)


class RunResolver:
    """Turns partial CLI input plus stored defaults into a RunConfig.

    Resolution happens in a fixed order (project, prompt name, input text,
    prompt version, models, dataset) because earlier steps may create records
    that later steps read. Records created before a failing step stay
    persisted.
    """

    def __init__(
        self,
        projects: NamedCollectionRepo[Project],
        prompts: ProjectScopedRepo[Prompt],
        model_configs: ProjectScopedRepo[ProjectModelConfig],
        data_sets: ProjectScopedRepo[DataSet],
        queue: RunQueue,
        detector: GitContextDetector | None = None,
        default_models: list[str] | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.projects = projects
        self.prompts = prompts
        self.model_configs = model_configs
        self.data_sets = data_sets
        self.queue = queue
        self.detector = detector
        self.default_models = list(default_models or DEFAULT_MODELS)
        self.clock = clock

    def resolve(self, req: RunRequest) -> ResolvedRun:
        notices: list[str] = []
        warnings: list[str] = []

        project = self.resolve_project(req.project, notices)

        prompt_name = req.prompt_name
        if prompt_name is None and project is not None:
            prompt_name = project.name

        raw_text = self.raw_text(req)

        prompt: Prompt | None = None
        version: PromptVersion | None = None
        saved_version = False
        if prompt_name is not None:
            project, prompt = self.resolve_prompt(prompt_name, project, notices)
            prompt, version, saved_version = self.apply_text(
                prompt, prompt_name, raw_text, req.version_note, notices
            )
            final_prompt = version.content
        elif raw_text is not None:
            final_prompt = raw_text
        else:
            raise NoPromptProvided()

        models = self.resolve_models(req.models, project, None if req.json_output else warnings)

        config = RunConfig(
            prompt=final_prompt,
            models=models,
            dataset=self.resolve_dataset(req.dataset, req.no_dataset, project),
            prompt_id=prompt.id if prompt else None,
            prompt_version_id=version.id if version else None,
            project_id=project.id if project else None,
            project_name=project.name if project else None,
            open_gui=req.open_gui,
            saved_version=saved_version,
        )

        if req.open_gui:
            self._persist(self.queue.push, config, what="pending run for the GUI")

        return ResolvedRun(config=config, notices=notices, warnings=warnings)

    def resolve_project(self, token: str | None, notices: list[str]) -> Project | None:
        if token is not None:
            project = self.projects.find(token)
            if project is None:
                raise ProjectNotFound(token)
            return project

        detected = self.detector.detect() if self.detector else None
        if not detected:
            return None

        existing = self.projects.find_by_name(detected)
        if existing is not None:
            return existing

        now = self.clock()
        project = Project(
            id=new_id(),
            name=detected,
            description=f"Auto-created from git repo: {detected}",
            created_at=now,
            updated_at=now,
        )
        if self._persist(self.projects.add, project, what=f"project '{detected}'"):
            notices.append(f"Created project '{detected}' from git repo")
        return project

    @staticmethod
    def raw_text(req: RunRequest) -> str | None:
        if req.prompt_text is not None:
            return req.prompt_text
        if req.stdin_text is not None and req.stdin_text.strip():
            return req.stdin_text.strip()
        return None

    def resolve_prompt(
        self,
        name: str,
        project: Project | None,
        notices: list[str],
    ) -> tuple[Project | None, Prompt]:
        scope = project.id if project else None
        prompt = self.prompts.find_by_name(name, project_id=scope)
        if prompt is None and project is not None:
            project, default = self.ensure_default_prompt(project, notices)
            if default.name.casefold() == name.casefold():
                prompt = default
        if prompt is None:
            raise PromptNotFound(name)
        return project, prompt

    def ensure_default_prompt(self, project: Project, notices: list[str]) -> tuple[Project, Prompt]:
        existing = self.prompts.find_by_name(project.name, project_id=project.id)
        if existing is not None:
            return project, existing

        now = self.clock()
        seed = PromptVersion(
            id=new_id(),
            version_number=1,
            content="",
            note="Initial version",
            created_at=now,
        )
        prompt = Prompt(
            id=new_id(),
            project_id=project.id,
            name=project.name,
            description=f"Prompt for {project.name} CLI evaluations",
            versions=[seed],
            current_version_id=seed.id,
            created_at=now,
            updated_at=now,
        )
        project = project.model_copy(
            update={"prompt_ids": [*project.prompt_ids, prompt.id], "updated_at": now}
        )

        saved = self._persist(self.prompts.add, prompt, what=f"prompt '{prompt.name}'")
        self._persist(self.projects.update, project, what=f"project '{project.name}'")
        if saved:
            notices.append(f"Created prompt '{project.name}' for project")
        return project, prompt

    def apply_text(
        self,
        prompt: Prompt,
        name: str,
        raw_text: str | None,
        note: str | None,
        notices: list[str],
    ) -> tuple[Prompt, PromptVersion, bool]:
        current = prompt.current_version()
        if current is None:
            raise CorruptPrompt(name)
        if raw_text is None or raw_text == current.content:
            return prompt, current, False

        now = self.clock()
        version = PromptVersion(
            id=new_id(),
            version_number=prompt.latest_version_number() + 1,
            content=raw_text,
            note=note,
            created_at=now,
        )
        prompt = prompt.model_copy(
            update={
                "versions": [*prompt.versions, version],
                "current_version_id": version.id,
                "updated_at": now,
            }
        )
        if self._persist(self.prompts.update, prompt, what=f"new version of prompt '{name}'"):
            notices.append(f"Saved as version {version.version_number} of prompt '{name}'")
        return prompt, version, True

    def resolve_models(
        self,
        models: str | None,
        project: Project | None,
        warnings: list[str] | None = None,
    ) -> list[str]:
        explicit = [m.strip() for m in (models or "").split(",") if m.strip()]
        if explicit:
            return explicit
        if project is not None:
            configured = [c.identifier for c in self.model_configs.list_for_project(project.id)]
            if configured:
                return configured
            if warnings is not None:
                warnings.append("No model configs in project, using defaults")
        return list(self.default_models)

    def resolve_dataset(self, name: str | None, no_dataset: bool, project: Project | None) -> str | None:
        if no_dataset:
            return None
        if name is not None:
            found = self.data_sets.find_by_name(name, project_id=project.id if project else None)
            return found.name if found else None
        if project is not None:
            owned = self.data_sets.list_for_project(project.id)
            return owned[0].name if owned else None
        return None

    def _persist(self, write: Callable[[Any], None], record: Any, what: str) -> bool:
        try:
            write(record)
        except StoreIOError as exc:
            logger.warning("Failed to save %s: %s", what, exc)
            return False
        return True
