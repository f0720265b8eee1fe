from datetime import datetime, timezone

import pytest

from deprelay.adapter import normalize, normalize_build_event
from deprelay.models import MalformedEvent, PackageFormat


def registry_notification(**overrides):
    detail = {
        "domainOwner": "111111111111",
        "domainName": "acme",
        "repositoryName": "releases",
        "packageFormat": "maven",
        "packageNamespace": "com.acme",
        "packageName": "core-lib",
        "packageVersion": "2.4.0",
        "packageVersionState": "Published",
    }
    detail.update(overrides)
    return {
        "account": "111111111111",
        "time": "2024-05-01T12:00:00Z",
        "source": "aws.codeartifact",
        "detail-type": "CodeArtifact Package Version State Change",
        "detail": detail,
    }


def test_normalize_registry_envelope():
    event = normalize(registry_notification())

    assert event.source_account == "111111111111"
    assert event.target_domain == "acme"
    assert event.repository_name == "releases"
    assert event.group_id == "com.acme"
    assert event.artifact_id == "core-lib"
    assert event.version == "2.4.0"
    assert event.package_format is PackageFormat.MAVEN
    assert event.package_version_state == "Published"
    assert event.published_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert event.release_key == "com.acme:core-lib:2.4.0@releases"


def test_normalize_canonical_fields_without_envelope():
    event = normalize({
        "sourceAccount": 111111111111,
        "repositoryName": "releases",
        "groupId": "com.acme",
        "artifactId": "core-lib",
        "version": "2.4.1",
        "packageFormat": "GRADLE",
        "packageVersionState": "Published",
    })

    assert event.source_account == "111111111111"
    assert event.package_format is PackageFormat.GRADLE
    assert event.coordinate == "com.acme:core-lib:2.4.1"


def test_missing_version_is_malformed():
    raw = registry_notification()
    del raw["detail"]["packageVersion"]

    with pytest.raises(MalformedEvent) as excinfo:
        normalize(raw)
    assert "version" in str(excinfo.value)


def test_blank_package_name_is_malformed():
    with pytest.raises(MalformedEvent):
        normalize(registry_notification(packageName="   "))


def test_unknown_format_is_malformed():
    with pytest.raises(MalformedEvent):
        normalize(registry_notification(packageFormat="pypi"))


def test_maven_without_namespace_is_malformed():
    raw = registry_notification()
    del raw["detail"]["packageNamespace"]

    with pytest.raises(MalformedEvent):
        normalize(raw)


def test_npm_namespace_is_optional():
    raw = registry_notification(packageFormat="npm", packageName="left-pad", packageVersion="1.3.0")
    del raw["detail"]["packageNamespace"]

    event = normalize(raw)

    assert event.group_id == ""
    assert event.package_name == "left-pad"
    assert event.coordinate == "left-pad@1.3.0"


def test_npm_scope_renders_package_name():
    event = normalize(registry_notification(packageFormat="npm", packageNamespace="acme", packageName="ui"))

    assert event.package_name == "@acme/ui"
    assert event.branch_name == "deprelay/acme/ui/2.4.0"


def test_missing_state_is_kept_empty():
    raw = registry_notification()
    del raw["detail"]["packageVersionState"]

    assert normalize(raw).package_version_state == ""


@pytest.mark.parametrize("raw", [None, "text", ["list"], 42])
def test_non_object_is_malformed(raw):
    with pytest.raises(MalformedEvent):
        normalize(raw)


def test_normalize_build_event_failure_cause():
    raw = {
        "account": "222222222222",
        "detail": {
            "build-status": "failed",
            "project-name": "receiver-build",
            "build-id": "arn:aws:codebuild:eu-west-1:222222222222:build/receiver-build:42",
            "additional-information": {
                "phases": [
                    {"phase-type": "INSTALL", "phase-status": "SUCCEEDED"},
                    {"phase-type": "BUILD", "phase-status": "FAILED",
                     "phase-context": ["COMMAND_EXECUTION_ERROR: mvn verify exit status 1"]},
                ]
            },
        },
    }

    event = normalize_build_event(raw)

    assert event.account == "222222222222"
    assert event.status == "FAILED"
    assert event.project_name == "receiver-build"
    assert event.build_id.endswith(":42")
    assert event.cause == "BUILD: COMMAND_EXECUTION_ERROR: mvn verify exit status 1"


@pytest.mark.parametrize("info", [
    "see build logs",
    {"phases": "BUILD failed"},
    {"phases": ["BUILD", {"phase-type": "BUILD", "phase-status": "FAILED", "phase-context": "exit 1"}]},
])
def test_build_event_with_odd_phase_details_is_normalized(info):
    raw = {"account": "222222222222",
           "detail": {"build-id": "b-9", "build-status": "FAILED", "additional-information": info}}

    event = normalize_build_event(raw)

    assert event.build_id == "b-9"
    assert event.cause in ("", "BUILD")


def test_build_event_without_id_is_malformed():
    with pytest.raises(MalformedEvent):
        normalize_build_event({"account": "222222222222", "status": "FAILED"})
