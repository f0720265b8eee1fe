"""Dependency manifest rewriting.

Each package format maps to the manifest files that declare its
dependencies. Files are rewritten textually so formatting and comments in
the receiver's repository survive the update.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..models import DependencyNotFound, PackageFormat, ReleaseEvent

logger = logging.getLogger(__name__)

MANIFEST_FILES: Dict[PackageFormat, Tuple[str, ...]] = {
    PackageFormat.MAVEN: ("pom.xml",),
    PackageFormat.GRADLE: ("build.gradle", "build.gradle.kts", "pom.xml"),
    PackageFormat.NPM: ("package.json",),
}

SKIP_DIRS = {".git", "node_modules", "target", "build", ".gradle", ".idea"}

NPM_SECTIONS = ("dependencies", "devDependencies", "peerDependencies", "optionalDependencies")

_DEPENDENCY_BLOCK = re.compile(r"<dependency>(.*?)</dependency>", re.S)
_EXCLUSIONS = re.compile(r"<exclusions>.*?</exclusions>", re.S)
_VERSION_ELEMENT = re.compile(r"(<version>\s*)([^<]*?)(\s*</version>)")
_PROPERTY_REF = re.compile(r"^\$\{([^}]+)\}$")
_NPM_SPEC = re.compile(r"^(\^|~|>=|<=|>|<|=)?\s*v?\d")


@dataclass
class PatchResult:
    """Files that declare the dependency and the subset that was rewritten."""

    matched: List[Path] = field(default_factory=list)
    changed: List[Path] = field(default_factory=list)


def find_manifests(root: Path, package_format: PackageFormat) -> List[Path]:
    """Manifests for the format, root module first."""
    names = MANIFEST_FILES[package_format]
    found = []
    for name in names:
        for path in sorted(root.rglob(name)):
            relative = path.relative_to(root)
            if any(part in SKIP_DIRS for part in relative.parts[:-1]):
                continue
            found.append(path)
    return sorted(found, key=lambda p: (len(p.relative_to(root).parts), str(p)))


def _xml_text(tag: str, value: str) -> re.Pattern:
    return re.compile(rf"<{tag}>\s*{re.escape(value)}\s*</{tag}>")


def update_pom(text: str, group_id: str, artifact_id: str, version: str) -> Tuple[str, bool]:
    """Rewrite matching <dependency> versions. Returns (text, matched)."""
    group_re = _xml_text("groupId", group_id)
    artifact_re = _xml_text("artifactId", artifact_id)
    properties: List[str] = []
    matched = False

    def rewrite(block: re.Match) -> str:
        nonlocal matched
        body = block.group(1)
        # coordinates listed under <exclusions> belong to other artifacts
        own = _EXCLUSIONS.sub("", body)
        if not (group_re.search(own) and artifact_re.search(own)):
            return block.group(0)
        current = _VERSION_ELEMENT.search(own)
        if current is None:
            # version inherited from dependencyManagement or a parent
            return block.group(0)
        matched = True
        reference = _PROPERTY_REF.match(current.group(2))
        if reference:
            properties.append(reference.group(1))
            return block.group(0)
        body = _VERSION_ELEMENT.sub(lambda m: f"{m.group(1)}{version}{m.group(3)}", body, count=1)
        return f"<dependency>{body}</dependency>"

    text = _DEPENDENCY_BLOCK.sub(rewrite, text)

    for prop in properties:
        prop_re = re.compile(rf"(<{re.escape(prop)}>\s*)([^<]*?)(\s*</{re.escape(prop)}>)")
        if prop_re.search(text):
            text = prop_re.sub(lambda m: f"{m.group(1)}{version}{m.group(3)}", text, count=1)
        else:
            logger.warning(f"Property ${{{prop}}} for {group_id}:{artifact_id} is not defined in this pom")
    return text, matched


def update_gradle(text: str, group_id: str, artifact_id: str, version: str) -> Tuple[str, bool]:
    """Rewrite "group:artifact:version" and map-style declarations."""
    g, a = re.escape(group_id), re.escape(artifact_id)
    string_re = re.compile(rf"""(["'])({g}:{a}:)([^:"'$\s]+)((?::[^"']*)?)\1""")
    map_re = re.compile(
        rf"""(group\s*[:=]\s*(["']){g}\2\s*,\s*name\s*[:=]\s*(["']){a}\3\s*,\s*version\s*[:=]\s*(["']))([^"'$]+)(\4)"""
    )
    matched = bool(string_re.search(text) or map_re.search(text))
    text = string_re.sub(lambda m: f"{m.group(1)}{m.group(2)}{version}{m.group(4)}{m.group(1)}", text)
    text = map_re.sub(lambda m: f"{m.group(1)}{version}{m.group(6)}", text)
    return text, matched


def update_package_json(text: str, package_name: str, version: str) -> Tuple[str, bool]:
    """Rewrite the version spec of a package, keeping its range operator."""
    data = json.loads(text)
    matched = False
    for section in NPM_SECTIONS:
        deps = data.get(section)
        if not isinstance(deps, dict) or package_name not in deps:
            continue
        spec = str(deps[package_name]).strip()
        operator = _NPM_SPEC.match(spec)
        if operator is None:
            # tags, URLs and workspace links are not version pins
            continue
        matched = True
        deps[package_name] = f"{operator.group(1) or ''}{version}"

    if not matched:
        return text, False

    indent = _detect_indent(text)
    rendered = json.dumps(data, indent=indent, ensure_ascii=False)
    if text.endswith("\n"):
        rendered += "\n"
    return rendered, True


def _detect_indent(text: str) -> int:
    for line in text.splitlines()[1:]:
        stripped = line.lstrip(" ")
        if stripped and len(stripped) != len(line):
            return len(line) - len(stripped)
    return 2


def _update(path: Path, text: str, event: ReleaseEvent) -> Tuple[str, bool]:
    if path.name == "package.json":
        return update_package_json(text, event.package_name, event.version)
    if path.name == "pom.xml":
        return update_pom(text, event.group_id, event.artifact_id, event.version)
    return update_gradle(text, event.group_id, event.artifact_id, event.version)


def patch_manifests(root: Path, event: ReleaseEvent, manifests: Optional[List[Path]] = None) -> PatchResult:
    """Update every manifest declaring the released package.

    Raises DependencyNotFound when no manifest declares it.
    """
    result = PatchResult()
    for path in manifests if manifests is not None else find_manifests(root, event.package_format):
        try:
            original = path.read_text(encoding="utf-8")
            updated, matched = _update(path, original, event)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Skipping unreadable manifest {path}: {e}")
            continue
        if not matched:
            continue
        result.matched.append(path)
        if updated != original:
            path.write_text(updated, encoding="utf-8")
            result.changed.append(path)
            logger.info(f"Updated {event.package_name} to {event.version} in {path.relative_to(root)}")

    if not result.matched:
        raise DependencyNotFound(
            f"no {event.package_format.value} manifest declares {event.package_name}",
            str(root.name),
        )
    return result
