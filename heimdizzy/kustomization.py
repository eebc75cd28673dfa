"""Locating and patching the GitOps kustomization for a service.

The continuous delivery controller in the cluster reconciles the
`kustomization.yaml` committed to the repository. Deploying a new image means
rewriting the `images` entry for the service's image, which is done by
`patch_image_tag`, a pure function of the existing document. Fields the patch
does not touch are preserved as is.

Example:
```python
paths = candidate_paths(root, "email-service", kubernetes, "k8s/clusters/main")
update = await update_image_tag(paths, "email", image, "abc123-1700000000000")
```
"""

import copy
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

import aiofiles
from aiofiles.os import makedirs, listdir
from aiofiles.ospath import isfile
import yaml

from .config import KubernetesConfig
from .exceptions import DeploymentError

__all__ = [
    "KUSTOMIZATION_FILE",
    "candidate_paths",
    "new_kustomization",
    "patch_image_tag",
    "update_image_tag",
    "KustomizationUpdate",
]

_LOGGER = logging.getLogger(__name__)

KUSTOMIZATION_FILE = "kustomization.yaml"
API_VERSION = "kustomize.config.k8s.io/v1beta1"
KIND = "Kustomization"


@dataclass
class KustomizationUpdate:
    """Result of writing a new image tag to a kustomization."""

    path: Path
    created: bool
    """True if no kustomization existed and a new one was synthesized."""

    changed: bool
    """False if the file already referenced the tag."""


def _as_file(path: Path) -> Path:
    if path.name == KUSTOMIZATION_FILE:
        return path
    return path / KUSTOMIZATION_FILE


def candidate_paths(
    project_root: Path,
    service: str,
    kubernetes: KubernetesConfig,
    gitops_base_path: str,
) -> list[Path]:
    """Ordered kustomization locations to search for the service.

    An explicit `gitOpsPath` replaces the conventional location
    `{base}/infrastructure/{namespace}/services/{service}`.
    """
    if kubernetes.gitops_path:
        relative = _as_file(Path(kubernetes.gitops_path))
    else:
        relative = (
            Path(gitops_base_path)
            / "infrastructure"
            / kubernetes.namespace
            / "services"
            / service
            / KUSTOMIZATION_FILE
        )
    if relative.is_absolute():
        return [relative]
    return [project_root / relative, relative]


def new_kustomization(
    namespace: str, image_name: str, tag: str, resources: list[str]
) -> dict[str, Any]:
    """Return a minimal kustomization referencing a single image."""
    return {
        "apiVersion": API_VERSION,
        "kind": KIND,
        "namespace": namespace,
        "resources": list(resources),
        "images": [{"name": image_name, "newTag": tag}],
    }


def patch_image_tag(
    doc: dict[str, Any],
    image_name: str,
    tag: str,
    aliases: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Return a copy of doc with the image entry pointing at tag.

    The first entry whose name is the image name or one of its aliases is
    updated, otherwise a new entry is appended.
    """
    result = copy.deepcopy(doc)
    images = result.get("images")
    if not isinstance(images, list):
        images = []
        result["images"] = images
    names = {image_name, *aliases}
    for entry in images:
        if isinstance(entry, dict) and entry.get("name") in names:
            entry["newTag"] = tag
            return result
    images.append({"name": image_name, "newTag": tag})
    return result


async def _read(path: Path) -> dict[str, Any]:
    async with aiofiles.open(path, encoding="utf-8") as stream:
        content = await stream.read()
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise DeploymentError(f"Invalid kustomization {path}: {err}") from err
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise DeploymentError(f"Invalid kustomization {path}: expected a mapping")
    return doc


async def _write(path: Path, doc: dict[str, Any]) -> None:
    content = yaml.dump(doc, sort_keys=False, explicit_start=False)
    async with aiofiles.open(path, mode="w", encoding="utf-8") as stream:
        await stream.write(content)


async def _resources(directory: Path) -> list[str]:
    try:
        names = await listdir(directory)
    except FileNotFoundError:
        return []
    return sorted(
        name
        for name in names
        if name.endswith((".yaml", ".yml")) and name != KUSTOMIZATION_FILE
    )


async def locate(paths: list[Path]) -> Path | None:
    """Return the first candidate that exists."""
    for path in paths:
        if await isfile(path):
            return path
    return None


async def update_image_tag(
    paths: list[Path],
    namespace: str,
    image_name: str,
    tag: str,
    aliases: tuple[str, ...] = (),
) -> KustomizationUpdate:
    """Write tag to the first existing kustomization, creating one if needed."""
    if (path := await locate(paths)) is None:
        path = paths[0]
        await makedirs(path.parent, exist_ok=True)
        resources = await _resources(path.parent)
        await _write(path, new_kustomization(namespace, image_name, tag, resources))
        _LOGGER.info("Created %s", path)
        return KustomizationUpdate(path=path, created=True, changed=True)

    doc = await _read(path)
    patched = patch_image_tag(doc, image_name, tag, aliases)
    if patched == doc:
        _LOGGER.info("%s already references tag %s", path, tag)
        return KustomizationUpdate(path=path, created=False, changed=False)
    await _write(path, patched)
    _LOGGER.info("Updated %s with new tag %s", path, tag)
    return KustomizationUpdate(path=path, created=False, changed=True)
