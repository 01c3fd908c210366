from typing import Literal

from pydantic import BaseModel, Field


class ProjectRules(BaseModel):
    slug: str
    rules_version: str


class RedirectRules(BaseModel):
    default_status_code: int = Field(301, ge=100, le=599)
    conflict_policy: Literal["replace", "reject"] = "replace"
    max_write_attempts: int = Field(3, ge=1)


class StorageRules(BaseModel):
    db_path: str = "data/redirects.db"
    migrations_dir: str | None = None


class Rules(BaseModel):
    project: ProjectRules
    redirects: RedirectRules = Field(default_factory=RedirectRules)
    storage: StorageRules = Field(default_factory=StorageRules)
