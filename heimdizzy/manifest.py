"""Kubernetes objects generated for a service.

These are used when no manifests are maintained in the repository (direct
container deployments) and for the one-shot migration job run by the managed
runtime strategy.
"""

from typing import Any

from .config import KubernetesConfig, MigrationConfig

__all__ = [
    "deployment_manifest",
    "service_manifest",
    "migration_job_manifest",
]

MIGRATION_ENV_MARKERS = ("DATABASE", "REDIS")


def deployment_manifest(
    name: str, kubernetes: KubernetesConfig, image: str
) -> dict[str, Any]:
    """Return a Deployment running a single container of the image."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": name, "namespace": kubernetes.namespace},
        "spec": {
            "replicas": kubernetes.replicas,
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {
                    "containers": [
                        {
                            "name": name,
                            "image": image,
                            "ports": [port.to_dict() for port in kubernetes.ports],
                            "env": [env.to_dict() for env in kubernetes.env],
                            "resources": kubernetes.resources.to_dict(),
                        }
                    ]
                },
            },
        },
    }


def service_manifest(name: str, kubernetes: KubernetesConfig) -> dict[str, Any]:
    """Return a Service exposing every configured container port."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": kubernetes.namespace},
        "spec": {
            "selector": {"app": name},
            "ports": [
                {
                    "name": port.name,
                    "port": port.container_port,
                    "targetPort": port.container_port,
                }
                for port in kubernetes.ports
            ],
        },
    }


def migration_job_manifest(
    name: str,
    job_name: str,
    image: str,
    kubernetes: KubernetesConfig,
    migration: MigrationConfig,
    revision: str,
    timestamp: str,
) -> dict[str, Any]:
    """Return a Job that runs the image once in migration mode.

    Only the service's database and cache variables are passed through.
    """
    env = [
        {"name": "RUN_MODE", "value": "migrate"},
        {"name": "RUST_LOG", "value": f"info,{name}=debug"},
        {"name": "GIT_SHA", "value": revision},
        {"name": "BUILD_TIMESTAMP", "value": timestamp},
    ]
    env.extend(
        var.to_dict()
        for var in kubernetes.env
        if any(marker in var.name for marker in MIGRATION_ENV_MARKERS)
    )
    pod_spec: dict[str, Any] = {
        "restartPolicy": "Never",
        "containers": [
            {
                "name": f"{name}-migrator",
                "image": image,
                "imagePullPolicy": "Always",
                "env": env,
                "envFrom": [{"configMapRef": {"name": f"{name}-config"}}],
                "resources": {
                    "requests": {"memory": "128Mi", "cpu": "100m"},
                    "limits": {"memory": "256Mi", "cpu": "500m"},
                },
            }
        ],
    }
    if migration.image_pull_secrets:
        pod_spec["imagePullSecrets"] = [
            {"name": secret} for secret in migration.image_pull_secrets
        ]
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {
            "name": job_name,
            "namespace": kubernetes.namespace,
            "labels": {"app": name, "component": "migration", "service": name},
            "annotations": {
                "deployment.kubernetes.io/timestamp": timestamp,
                "deployment.kubernetes.io/git-sha": revision,
            },
        },
        "spec": {
            "backoffLimit": 3,
            "activeDeadlineSeconds": migration.timeout,
            "ttlSecondsAfterFinished": 3600,
            "template": {
                "metadata": {"labels": {"app": name, "component": "migration"}},
                "spec": pod_spec,
            },
        },
    }
