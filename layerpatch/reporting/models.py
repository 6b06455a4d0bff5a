from pydantic import BaseModel, Field

from layerpatch.patches.models import ApplyStatus


class ApplyOutcome(BaseModel):
    patch_file: str
    file_path: str = ""
    status: ApplyStatus
    detail: str = ""
    module: str | None = None
    hunks_applied: int = 0
    hunks_already_applied: int = 0

    @property
    def blocks_build(self) -> bool:
        return self.status.blocks_build


class ReportWarning(BaseModel):
    code: str
    message: str
    line_number: int | None = None


class Report(BaseModel):
    run_id: str | None = None
    patch_dir: str | None = None
    dry_run: bool = False
    total_patches: int
    counts: dict[ApplyStatus, int]
    outcomes: list[ApplyOutcome] = Field(default_factory=list)
    skipped_patches: list[str] = Field(default_factory=list)
    warnings: list[ReportWarning] = Field(default_factory=list)
    may_proceed: bool
