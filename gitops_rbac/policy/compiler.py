"""
GITOPS RBAC - Policy Compiler

Turns a declarative policy document into an immutable PolicyGeneration.

Document format (YAML or JSON):

    roles:
      - name: viewer
        permissions:
          - {resource: "apps/*", verb: get}
          - "sync apps/guestbook"
    bindings:
      - subjectPattern: "group:team-view"
        roles: [viewer]

Compilation is a pure function: it never touches the policy store. All
violations in a document are collected and reported together.
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gitops_rbac.core.exceptions import CompileError, CompileErrorKind, CompileIssue
from gitops_rbac.policy.model import Binding, Permission, PolicyGeneration, Role
from gitops_rbac.policy.patterns import (
    PatternError,
    ResourcePattern,
    SubjectPattern,
    parse_verb,
)


logger = logging.getLogger(__name__)


# ============================================================
# Document Schema
# ============================================================


class PermissionSpec(BaseModel):
    """Permission written as a mapping."""

    model_config = ConfigDict(extra="forbid")

    resource: str
    verb: str


class RoleSpec(BaseModel):
    """Role definition as written in the document."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    description: Optional[str] = None
    permissions: List[Union[PermissionSpec, str]] = Field(default_factory=list)


class BindingSpec(BaseModel):
    """Binding as written in the document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    subject_pattern: str = Field(alias="subjectPattern")
    roles: List[str] = Field(min_length=1)


class PolicyDocument(BaseModel):
    """Top-level policy document."""

    model_config = ConfigDict(extra="forbid")

    roles: List[RoleSpec] = Field(default_factory=list)
    bindings: List[BindingSpec] = Field(default_factory=list)


PolicySource = Union[Mapping[str, Any], str, PolicyDocument, None]


# ============================================================
# Loading
# ============================================================


def parse_policy_text(text: str) -> Dict[str, Any]:
    """Parse YAML (or JSON, which is valid YAML) policy text."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise CompileError([
            CompileIssue(
                CompileErrorKind.MALFORMED_DOCUMENT,
                "document",
                "",
                f"not valid YAML/JSON: {e}",
            )
        ]) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CompileError([
            CompileIssue(
                CompileErrorKind.MALFORMED_DOCUMENT,
                "document",
                "",
                f"top level must be a mapping, got {type(data).__name__}",
            )
        ])
    return data


def load_policy_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read and parse a policy document from disk."""
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = parse_policy_text(f.read())
    logger.info(f"Policy document loaded from: {path}")
    return data


def _format_location(loc: tuple) -> str:
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or "document"


def _validate_shape(source: PolicySource) -> PolicyDocument:
    if isinstance(source, PolicyDocument):
        return source
    if source is None:
        return PolicyDocument()
    if isinstance(source, str):
        source = parse_policy_text(source)

    try:
        return PolicyDocument.model_validate(source)
    except ValidationError as e:
        issues = [
            CompileIssue(
                CompileErrorKind.MALFORMED_DOCUMENT,
                _format_location(err["loc"]),
                "",
                err["msg"],
            )
            for err in e.errors()
        ]
        raise CompileError(issues) from e


# ============================================================
# Compilation
# ============================================================


def _compile_permission(
    spec: Union[PermissionSpec, str],
    location: str,
    role_name: str,
    issues: List[CompileIssue],
) -> Optional[Permission]:
    if isinstance(spec, str):
        parts = spec.split()
        if len(parts) != 2:
            issues.append(CompileIssue(
                CompileErrorKind.MALFORMED_PATTERN,
                location,
                role_name,
                f"permission '{spec}' must read '<verb> <resource>'",
            ))
            return None
        verb_text, resource_text = parts
    else:
        verb_text, resource_text = spec.verb, spec.resource

    verb = resource = None
    try:
        verb = parse_verb(verb_text)
    except PatternError as e:
        issues.append(CompileIssue(CompileErrorKind.UNKNOWN_VERB, location, role_name, str(e)))

    try:
        resource = ResourcePattern.parse(resource_text)
    except PatternError as e:
        issues.append(CompileIssue(CompileErrorKind.MALFORMED_PATTERN, location, role_name, str(e)))

    if verb is None or resource is None:
        return None
    return Permission(resource=resource, verb=verb)


def compile_policy(source: PolicySource, previous: int = 0) -> PolicyGeneration:
    """
    Compile a policy document into a new generation.

    Args:
        source: Mapping, YAML/JSON text, or a validated PolicyDocument
        previous: Number of the generation this one will replace

    Returns:
        PolicyGeneration numbered ``previous + 1``

    Raises:
        CompileError: With every issue found in the document
    """
    document = _validate_shape(source)
    issues: List[CompileIssue] = []

    roles: Dict[str, Role] = {}
    declared = set()
    for i, spec in enumerate(document.roles):
        location = f"roles[{i}]"
        if spec.name in declared:
            issues.append(CompileIssue(
                CompileErrorKind.DUPLICATE_ROLE_NAME,
                location,
                spec.name,
                f"role '{spec.name}' is defined more than once",
            ))
            continue
        declared.add(spec.name)

        permissions = set()
        for j, perm_spec in enumerate(spec.permissions):
            permission = _compile_permission(
                perm_spec, f"{location}.permissions[{j}]", spec.name, issues
            )
            if permission is not None:
                permissions.add(permission)
        roles[spec.name] = Role(name=spec.name, permissions=frozenset(permissions))

    bindings: List[Binding] = []
    for i, spec in enumerate(document.bindings):
        location = f"bindings[{i}]"
        subject = None
        try:
            subject = SubjectPattern.parse(spec.subject_pattern)
        except PatternError as e:
            issues.append(CompileIssue(
                CompileErrorKind.MALFORMED_PATTERN, location, spec.subject_pattern, str(e)
            ))

        role_names: List[str] = []
        for name in spec.roles:
            if name not in declared:
                issues.append(CompileIssue(
                    CompileErrorKind.UNKNOWN_ROLE_REFERENCE,
                    location,
                    spec.subject_pattern,
                    f"binding references unknown role '{name}'",
                ))
            elif name not in role_names:
                role_names.append(name)

        if subject is not None:
            bindings.append(Binding(subject=subject, roles=tuple(role_names)))

    if issues:
        logger.warning(f"Policy compilation failed with {len(issues)} issue(s)")
        raise CompileError(issues)

    generation = PolicyGeneration(
        number=previous + 1,
        roles=MappingProxyType(roles),
        bindings=tuple(bindings),
    )
    logger.debug(
        f"Compiled generation {generation.number}: "
        f"{len(roles)} roles, {len(bindings)} bindings, digest={generation.digest[:12]}"
    )
    return generation
