"""Kubernetes objects that make up a jiva volume, built as plain JSON dicts."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from jivaop.api import JivaVolume
from jivaop.policy import (
    capacity_in_bytes,
    controller_labels,
    controller_match_labels,
    controller_ports,
    controller_service_ports,
    default_annotations,
    get_image,
    replica_labels,
    replica_match_labels,
    replica_ports,
    service_labels,
)

JIVA_OPERATOR = "jiva-operator"
PDB_API_VERSION = "policyv1beta1"
_PULL_IF_NOT_PRESENT = "IfNotPresent"
_SVC_NAME_FORMAT = "{name}-jiva-ctrl-svc.{namespace}.svc.cluster.local"


def controller_service_fqdn(name: str, namespace: str) -> str:
    """Cluster DNS name of a volume's controller service."""
    return _SVC_NAME_FORMAT.format(name=name, namespace=namespace)


def _group_of(api_version: str) -> str:
    return api_version.split("/", 1)[0] if "/" in api_version else ""


def set_controller_reference(owner: JivaVolume, obj: dict[str, Any]) -> dict[str, Any]:
    """Make owner the controlling owner of obj, in place, and return obj.

    Raises ValueError when obj lives in another namespace than its owner or is
    already controlled by a different object.
    """
    metadata = obj.setdefault("metadata", {})
    owner_ns = owner.metadata.namespace
    if owner_ns and metadata.get("namespace", "") != owner_ns:
        raise ValueError(
            f"cross-namespace owner references are disallowed, owner's namespace "
            f"{owner_ns}, obj's namespace {metadata.get('namespace', '')}"
        )
    ref = {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.metadata.name,
        "uid": owner.metadata.uid,
        "blockOwnerDeletion": True,
        "controller": True,
    }
    refs: list[dict[str, Any]] = metadata.setdefault("ownerReferences", [])

    def same_owner(existing: dict[str, Any]) -> bool:
        return (
            _group_of(existing.get("apiVersion", "")) == _group_of(ref["apiVersion"])
            and existing.get("kind") == ref["kind"]
            and existing.get("name") == ref["name"]
        )

    for existing in refs:
        if existing.get("controller") and not same_owner(existing):
            raise ValueError(
                f"Object {metadata.get('namespace', '')}/{metadata.get('name', '')} is "
                f"already owned by another {existing.get('kind')} controller "
                f"{existing.get('name')}"
            )
    for position, existing in enumerate(refs):
        if same_owner(existing):
            refs[position] = ref
            break
    else:
        refs.append(ref)
    return obj


def controller_service(cr: JivaVolume, version: str) -> dict[str, Any]:
    """The ClusterIP service in front of the volume's controller."""
    pv = cr.spec.pv
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": cr.name + "-jiva-ctrl-svc",
            "namespace": cr.namespace,
            "labels": service_labels(pv, version),
        },
        "spec": {
            "selector": {
                "openebs.io/cas-type": "jiva",
                "openebs.io/persistent-volume": pv,
            },
            "ports": controller_service_ports(),
        },
    }


def _with_resources(container: dict[str, Any], resources: dict[str, Any] | None) -> dict[str, Any]:
    if resources is not None:
        container["resources"] = copy.deepcopy(resources)
    return container


def _apply_pod_options(pod_spec: dict[str, Any], cr: JivaVolume) -> None:
    policy = cr.spec.policy
    if policy.service_account_name:
        pod_spec["serviceAccountName"] = policy.service_account_name
    if policy.priority_class_name:
        pod_spec["priorityClassName"] = policy.priority_class_name


def controller_deployment(
    cr: JivaVolume, version: str, environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """The single-replica deployment that runs the jiva controller."""
    pv = cr.spec.pv
    target = cr.spec.policy.target
    containers = [
        _with_resources(
            {
                "name": "jiva-controller",
                "image": get_image("OPENEBS_IO_JIVA_CONTROLLER_IMAGE", "jiva-controller", environ),
                "ports": controller_ports(),
                "command": ["launch"],
                "args": [
                    "controller",
                    "--frontend",
                    "gotgt",
                    "--clusterIP",
                    cr.spec.iscsi_spec.target_ip,
                    cr.name,
                ],
                "env": [{"name": "REPLICATION_FACTOR", "value": str(target.replication_factor)}],
                "imagePullPolicy": _PULL_IF_NOT_PRESENT,
            },
            target.resources,
        )
    ]
    if target.monitor:
        containers.append(
            _with_resources(
                {
                    "name": "maya-volume-exporter",
                    "image": get_image("OPENEBS_IO_MAYA_EXPORTER_IMAGE", "exporter", environ),
                    "imagePullPolicy": _PULL_IF_NOT_PRESENT,
                    "command": ["maya-exporter"],
                    "ports": [{"containerPort": 9500, "protocol": "TCP"}],
                },
                target.aux_resources,
            )
        )
    pod_spec: dict[str, Any] = {
        "serviceAccountName": JIVA_OPERATOR,
        "containers": containers,
    }
    if target.tolerations:
        pod_spec["tolerations"] = copy.deepcopy(target.tolerations)
    _apply_pod_options(pod_spec, cr)
    if target.node_selector is not None:
        pod_spec["nodeSelector"] = dict(target.node_selector)
    if target.affinity is not None:
        pod_spec["affinity"] = copy.deepcopy(target.affinity)
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": cr.name + "-jiva-ctrl",
            "namespace": cr.namespace,
            "labels": controller_labels(pv, version),
        },
        "spec": {
            "replicas": 1,
            "strategy": {"type": "Recreate"},
            "selector": {"matchLabels": controller_match_labels(pv)},
            "template": {
                "metadata": {
                    "labels": controller_labels(pv, version),
                    "annotations": default_annotations(),
                },
                "spec": pod_spec,
            },
        },
    }


def replica_statefulset(
    cr: JivaVolume, version: str, environ: Mapping[str, str] | None = None
) -> dict[str, Any]:
    """The statefulset of replicas, one per node, each with its own claim.

    Raises ValueError when the volume capacity cannot be parsed.
    """
    pv = cr.spec.pv
    policy = cr.spec.policy
    replica = policy.replica
    capacity = capacity_in_bytes(cr.spec.capacity)

    container = _with_resources(
        {
            "name": "jiva-replica",
            "image": get_image("OPENEBS_IO_JIVA_REPLICA_IMAGE", "jiva-replica", environ),
            "ports": replica_ports(),
            "command": ["launch"],
            "args": [
                "replica",
                "--frontendIP",
                controller_service_fqdn(cr.name, cr.namespace),
                "--size",
                str(capacity),
                "openebs",
            ],
            "imagePullPolicy": _PULL_IF_NOT_PRESENT,
            "securityContext": {"privileged": True},
        },
        replica.resources,
    )
    container["volumeMounts"] = [{"name": "openebs", "mountPath": "/openebs"}]

    pod_spec: dict[str, Any] = {
        "serviceAccountName": JIVA_OPERATOR,
        "affinity": {
            "podAntiAffinity": {
                "requiredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "labelSelector": {"matchLabels": replica_match_labels(pv)},
                        "topologyKey": "kubernetes.io/hostname",
                    }
                ]
            }
        },
        "containers": [container],
    }
    if replica.tolerations:
        pod_spec["tolerations"] = copy.deepcopy(replica.tolerations)
    _apply_pod_options(pod_spec, cr)
    if replica.node_selector is not None:
        pod_spec["nodeSelector"] = dict(replica.node_selector)

    claim = {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": "openebs",
            "namespace": cr.namespace,
            "ownerReferences": [
                {
                    "apiVersion": cr.api_version,
                    "blockOwnerDeletion": False,
                    "controller": True,
                    "kind": cr.kind,
                    "name": cr.name,
                    "uid": cr.metadata.uid,
                }
            ],
        },
        "spec": {
            "storageClassName": policy.replica_sc,
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": cr.spec.capacity}},
        },
    }
    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {
            "name": cr.name + "-jiva-rep",
            "namespace": cr.namespace,
            "labels": replica_labels(pv, version),
        },
        "spec": {
            "serviceName": "jiva-replica-svc",
            "podManagementPolicy": "Parallel",
            "updateStrategy": {"type": "RollingUpdate"},
            "replicas": policy.target.replication_factor,
            "selector": {"matchLabels": replica_match_labels(pv)},
            "template": {
                "metadata": {"labels": replica_labels(pv, version)},
                "spec": pod_spec,
            },
            "volumeClaimTemplates": [claim],
        },
    }


def replica_pod_disruption_budget(cr: JivaVolume) -> dict[str, Any]:
    """A budget that keeps a majority of the replicas available."""
    replication_factor = cr.spec.policy.target.replication_factor
    return {
        "apiVersion": PDB_API_VERSION,
        "kind": "PodDisruptionBudget",
        "metadata": {"name": cr.name + "-pdb", "namespace": cr.namespace},
        "spec": {
            "selector": {"matchLabels": replica_match_labels(cr.spec.pv)},
            "minAvailable": replication_factor // 2 + 1,
        },
    }