"""Render a solution's assignments into Kubernetes manifest documents."""

import re
from typing import Any, Dict, List, Union

import yaml

from k8s_recommender.core.state.base import ManifestSet, Solution

_SEGMENT_RE = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def split_field_path(field_path: str) -> List[Union[str, int]]:
    """``spec.containers[0].image`` -> ``["spec", "containers", 0, "image"]``."""
    parts: List[Union[str, int]] = []
    for name, position in _SEGMENT_RE.findall(field_path):
        parts.append(int(position) if position else name)
    return parts


def set_path(document: Dict[str, Any], field_path: str, value: Any) -> None:
    """
    Set ``value`` at ``field_path``, creating intermediate objects and lists.

    An intermediate value of the wrong shape (a scalar, or a list where the
    path needs an object and the reverse) is replaced.
    """
    parts = split_field_path(field_path)
    if not parts:
        return
    current: Any = document
    for part, following in zip(parts, parts[1:]):
        expected = list if isinstance(following, int) else dict
        if isinstance(part, int):
            while len(current) <= part:
                current.append(None)
            if not isinstance(current[part], expected):
                current[part] = expected()
        elif not isinstance(current.get(part), expected):
            current[part] = expected()
        current = current[part]
    last = parts[-1]
    if isinstance(last, int):
        while len(current) <= last:
            current.append(None)
    current[last] = value


def render_documents(solution: Solution) -> List[Dict[str, Any]]:
    documents = []
    for resource in solution.resources:
        document: Dict[str, Any] = {
            "apiVersion": resource.identity.api_version,
            "kind": resource.identity.kind,
            "metadata": {},
        }
        for field_path in sorted(resource.assignments):
            set_path(document, field_path, resource.assignments[field_path])
        documents.append(document)
    return documents


def render_manifests(session_id: str, solution: Solution) -> ManifestSet:
    documents = render_documents(solution)
    return ManifestSet(
        session_id=session_id,
        solution_id=solution.solution_id,
        solution_version=solution.version,
        documents=documents,
        yaml=yaml.safe_dump_all(documents, sort_keys=False, default_flow_style=False),
    )
