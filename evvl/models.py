from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_MODELS = ("anthropic/claude-3-5-sonnet", "openai/gpt-4")


class CollectionKey(str, Enum):
    PROJECTS = "evvl_projects_v2"
    PROMPTS = "evvl_prompts_v2"
    MODEL_CONFIGS = "evvl_model_configs_v2"
    DATA_SETS = "evvl_data_sets_v2"
    EVALUATION_RUNS = "evvl_evaluation_runs"
    PENDING_CLI_RUNS = "evvl_pending_cli_runs"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


class StoredRecord(BaseModel):
    """Shape shared with the GUI: camelCase keys, unknown keys kept on re-save."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Project(StoredRecord):
    id: str
    name: str
    description: str | None = None
    created_at: int
    updated_at: int
    prompt_ids: list[str] = Field(default_factory=list)
    model_config_ids: list[str] = Field(default_factory=list)
    data_set_ids: list[str] = Field(default_factory=list)


class PromptVersion(StoredRecord):
    id: str
    version_number: int
    content: str
    system_prompt: str | None = None
    parameters: dict[str, Any] | None = None
    note: str | None = None
    created_at: int


class Prompt(StoredRecord):
    id: str
    project_id: str
    name: str
    description: str | None = None
    versions: list[PromptVersion] = Field(default_factory=list)
    current_version_id: str
    created_at: int
    updated_at: int

    def current_version(self) -> PromptVersion | None:
        for version in self.versions:
            if version.id == self.current_version_id:
                return version
        return None

    def latest_version_number(self) -> int:
        return max((v.version_number for v in self.versions), default=0)


class ProjectModelConfig(StoredRecord):
    id: str
    project_id: str
    name: str = ""
    provider: str
    model: str
    parameters: dict[str, Any] | None = None
    created_at: int = 0

    @property
    def identifier(self) -> str:
        return f"{self.provider}/{self.model}"


class DataSetItem(StoredRecord):
    id: str
    name: str | None = None
    variables: dict[str, str] = Field(default_factory=dict)


class DataSet(StoredRecord):
    id: str
    project_id: str
    name: str
    items: list[DataSetItem] = Field(default_factory=list)
    created_at: int = 0
    updated_at: int = 0


class EvaluationRun(StoredRecord):
    id: str
    project_id: str
    prompt_id: str
    prompt_version_id: str
    model_config_ids: list[str] = Field(default_factory=list)
    data_set_id: str | None = None
    results: list[Any] = Field(default_factory=list)
    status: RunStatus
    created_at: int
    completed_at: int | None = None


class ModelRef(BaseModel):
    provider: str
    model: str


def parse_model_ref(ref: str) -> ModelRef:
    """Split ``provider/model``; bare model names get an inferred provider."""
    if "/" in ref:
        provider, model = ref.split("/", 1)
        return ModelRef(provider=provider, model=model)
    lowered = ref.lower()
    if "gpt" in lowered or "o1" in lowered or "davinci" in lowered:
        return ModelRef(provider="openai", model=ref)
    if "claude" in lowered:
        return ModelRef(provider="anthropic", model=ref)
    if "gemini" in lowered:
        return ModelRef(provider="gemini", model=ref)
    return ModelRef(provider="openrouter", model=ref)


class RunRequest(BaseModel):
    prompt_text: str | None = None
    stdin_text: str | None = None
    prompt_name: str | None = None
    version_note: str | None = None
    models: str | None = None
    dataset: str | None = None
    no_dataset: bool = False
    project: str | None = None
    json_output: bool = False
    open_gui: bool = False


class RunConfig(StoredRecord):
    """The assembled run handed to the executor (and, with --open, the GUI)."""

    source: str = "cli"
    prompt: str
    models: list[str]
    dataset: str | None = None
    prompt_id: str | None = None
    prompt_version_id: str | None = None
    project_id: str | None = None
    project_name: str | None = None
    open_gui: bool = False
    status: RunStatus = RunStatus.PENDING
    saved_version: bool = False

    def model_refs(self) -> list[ModelRef]:
        return [parse_model_ref(m) for m in self.models]


class ResolvedRun(BaseModel):
    config: RunConfig
    notices: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ProjectSummary(BaseModel):
    id: str
    name: str
    description: str | None = None
    prompts: int
    models: int
    datasets: int


class PromptSummary(BaseModel):
    id: str
    name: str
    project: str
    versions: int
    current_version: int


class ExportedResult(BaseModel):
    model: str
    provider: str
    content: str | None = None
    tokens: int | None = None
    latency: int | None = None
    error: str | None = None
    data_set_item: str | None = Field(default=None, serialization_alias="dataSetItem")


class ExportedRun(BaseModel):
    id: str
    timestamp: int
    prompt: str
    system_prompt: str | None = Field(default=None, serialization_alias="systemPrompt")
    status: RunStatus
    results: list[ExportedResult] = Field(default_factory=list)


class CliConfig(BaseModel):
    default_models: list[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    git_timeout: float = 2.0
    prompt_preview_width: int = 60
    store_filename: str = "store.json"
    detect_context: bool = True

    @field_validator("default_models")
    @classmethod
    def _validate_default_models(cls, value: list[str]) -> list[str]:
        normalized = [v.strip() for v in value if v and v.strip()]
        if not normalized:
            raise ValueError("default_models must contain at least one model")
        return normalized

    @field_validator("git_timeout")
    @classmethod
    def _validate_git_timeout(cls, value: float) -> float:
        if value <= 0.0:
            raise ValueError("git_timeout must be > 0")
        return value

    @field_validator("prompt_preview_width")
    @classmethod
    def _validate_preview_width(cls, value: int) -> int:
        if value < 4:
            raise ValueError("prompt_preview_width must be >= 4")
        return value
