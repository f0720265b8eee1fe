"""Normalization of raw registry and build notifications.

Notifications arrive either wrapped in an EventBridge-style envelope
(``{"account": ..., "time": ..., "detail": {...}}``) or as the bare detail
object. Registry field names (``packageNamespace``, ``packageName``, ...) and
the canonical names (``groupId``, ``artifactId``, ``version``) are both
accepted.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .models import BuildFailedEvent, MalformedEvent, PackageFormat, ReleaseEvent


class _RawReleaseNotification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    source_account: str = Field("", validation_alias=AliasChoices("sourceAccount", "domainOwner"))
    domain_name: str = Field("", validation_alias=AliasChoices("targetDomain", "domainName"))
    repository_name: str = Field("", validation_alias=AliasChoices("repositoryName"))
    namespace: Optional[str] = Field(None, validation_alias=AliasChoices("groupId", "packageNamespace"))
    name: str = Field(validation_alias=AliasChoices("artifactId", "packageName"))
    version: str = Field(validation_alias=AliasChoices("version", "packageVersion"))
    package_format: PackageFormat = Field(validation_alias=AliasChoices("packageFormat"))
    state: str = Field("", validation_alias=AliasChoices("packageVersionState"))
    published_at: Optional[datetime] = Field(None, validation_alias=AliasChoices("publishedAt", "time"))

    @field_validator("package_format", mode="before")
    @classmethod
    def _lower_format(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("source_account", "domain_name", "repository_name", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> Any:
        return "" if value is None else str(value)

    @field_validator("name", "version")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @model_validator(mode="after")
    def _namespace_required(self) -> "_RawReleaseNotification":
        if self.package_format is not PackageFormat.NPM and not (self.namespace or "").strip():
            raise ValueError(f"groupId is required for {self.package_format.value} packages")
        return self


class _RawBuildNotification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account: str = Field(validation_alias=AliasChoices("account"))
    build_id: str = Field(validation_alias=AliasChoices("buildId", "build-id"))
    status: str = Field(validation_alias=AliasChoices("status", "build-status"))
    cause: str = Field("", validation_alias=AliasChoices("cause"))
    project_name: str = Field("", validation_alias=AliasChoices("projectName", "project-name"))

    @field_validator("account", mode="before")
    @classmethod
    def _coerce_account(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


def _flatten(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise MalformedEvent("notification is not an object", type(raw).__name__)
    detail = raw.get("detail")
    if not isinstance(detail, dict):
        return dict(raw)

    fields = dict(detail)
    if raw.get("account"):
        fields.setdefault("sourceAccount", raw["account"])
        fields.setdefault("account", raw["account"])
    if raw.get("time"):
        fields.setdefault("publishedAt", raw["time"])
    return fields


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "notification"
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


def normalize(raw: Any) -> ReleaseEvent:
    """Turn a raw "package released" notification into a ReleaseEvent.

    Raises MalformedEvent when a required field is missing or the package
    format is not recognized. Never returns a partially populated event.
    """
    fields = _flatten(raw)
    try:
        parsed = _RawReleaseNotification.model_validate(fields)
    except ValidationError as e:
        raise MalformedEvent("malformed release notification", _describe(e)) from e

    return ReleaseEvent(
        source_account=parsed.source_account,
        target_domain=parsed.domain_name,
        repository_name=parsed.repository_name,
        group_id=(parsed.namespace or "").strip(),
        artifact_id=parsed.name,
        version=parsed.version,
        package_format=parsed.package_format,
        package_version_state=parsed.state,
        published_at=parsed.published_at or datetime.now(timezone.utc),
    )


def _failure_cause(fields: Dict[str, Any]) -> str:
    info = fields.get("additional-information")
    if not isinstance(info, dict):
        return ""
    phases = info.get("phases")
    for phase in phases if isinstance(phases, list) else []:
        if not isinstance(phase, dict):
            continue
        if str(phase.get("phase-status", "")).upper() in ("FAILED", "FAULT", "TIMED_OUT"):
            contexts = phase.get("phase-context")
            context = "; ".join(str(c) for c in contexts if c) if isinstance(contexts, list) else ""
            return f"{phase.get('phase-type', 'UNKNOWN')}: {context}" if context else str(phase.get("phase-type"))
    return ""


def normalize_build_event(raw: Any) -> BuildFailedEvent:
    """Turn a build state-change notification into a BuildFailedEvent."""
    fields = _flatten(raw)
    try:
        parsed = _RawBuildNotification.model_validate(fields)
    except ValidationError as e:
        raise MalformedEvent("malformed build notification", _describe(e)) from e

    return BuildFailedEvent(
        account=parsed.account,
        build_id=parsed.build_id,
        status=parsed.status.upper(),
        cause=parsed.cause or _failure_cause(fields),
        project_name=parsed.project_name,
    )
