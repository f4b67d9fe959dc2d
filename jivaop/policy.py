"""Defaults and fixed settings for the objects that serve a jiva volume."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from typing import Any

from jivaop.api import JivaVolumePolicySpec, ReplicaSpec, TargetSpec

DEFAULT_STORAGE_CLASS = "openebs-hostpath"
DEFAULT_REPLICATION_FACTOR = 3

_TAINT_EFFECT_NO_EXECUTE = "NoExecute"
_TOLERATION_OP_EXISTS = "Exists"

_REPLICA_TOLERATION_KEYS = (
    "node.kubernetes.io/notReady",
    "node.cloudprovider.kubernetes.io/uninitialized",
    "node.kubernetes.io/unreachable",
    "node.kubernetes.io/not-ready",
    "node.kubernetes.io/unschedulable",
    "node.kubernetes.io/out-of-disk",
    "node.kubernetes.io/memory-pressure",
    "node.kubernetes.io/disk-pressure",
    "node.kubernetes.io/network-unavailable",
)

_TARGET_TOLERATION_KEYS = (
    "node.kubernetes.io/notReady",
    "node.kubernetes.io/unreachable",
    "node.kubernetes.io/not-ready",
)

_DEFAULT_IMAGES = {
    "jiva-controller": "openebs/jiva:ci",
    "jiva-replica": "openebs/jiva:ci",
    "exporter": "openebs/m-exporter:ci",
}

_SIZE_RE = re.compile(r"([0-9]+(?:\.[0-9]+)*) ?([kKmMgGtTpP])?[iI]?[bB]?")
_BINARY_UNITS = {
    "k": 1024,
    "m": 1024**2,
    "g": 1024**3,
    "t": 1024**4,
    "p": 1024**5,
}


def base_replica_tolerations() -> list[dict[str, Any]]:
    """Tolerations every replica pod carries."""
    return [
        {"key": key, "operator": _TOLERATION_OP_EXISTS, "effect": _TAINT_EFFECT_NO_EXECUTE}
        for key in _REPLICA_TOLERATION_KEYS
    ]


def base_target_tolerations() -> list[dict[str, Any]]:
    """Tolerations every target pod carries; they evict immediately."""
    return [
        {
            "key": key,
            "operator": _TOLERATION_OP_EXISTS,
            "effect": _TAINT_EFFECT_NO_EXECUTE,
            "tolerationSeconds": 0,
        }
        for key in _TARGET_TOLERATION_KEYS
    ]


def _zero_resources() -> dict[str, Any]:
    return {
        "requests": {"cpu": "0", "memory": "0"},
        "limits": {"cpu": "0", "memory": "0"},
    }


def default_policy_spec() -> JivaVolumePolicySpec:
    """The policy a volume gets when none is named."""
    return JivaVolumePolicySpec(
        replica_sc=DEFAULT_STORAGE_CLASS,
        target=TargetSpec(
            tolerations=base_target_tolerations(),
            resources=_zero_resources(),
            aux_resources=_zero_resources(),
            replication_factor=DEFAULT_REPLICATION_FACTOR,
        ),
        replica=ReplicaSpec(
            tolerations=base_replica_tolerations(),
            resources=_zero_resources(),
        ),
    )


def validate_policy_spec(policy: JivaVolumePolicySpec) -> None:
    """Fill unset fields of a user policy with defaults, in place.

    The base tolerations are always put in front of the user's own.
    """
    defaults = default_policy_spec()
    if policy.target.replication_factor == 0:
        policy.target.replication_factor = defaults.target.replication_factor
    if policy.replica_sc == "":
        policy.replica_sc = defaults.replica_sc
    if policy.target.resources is None:
        policy.target.resources = defaults.target.resources
    if policy.replica.resources is None:
        policy.replica.resources = defaults.replica.resources
    policy.target.tolerations = defaults.target.tolerations + list(policy.target.tolerations)
    policy.replica.tolerations = defaults.replica.tolerations + list(policy.replica.tolerations)
    if policy.target.aux_resources is None:
        policy.target.aux_resources = defaults.target.aux_resources


def replica_match_labels(pv: str) -> dict[str, str]:
    """Labels that select the replica pods of a volume."""
    return {
        "openebs.io/cas-type": "jiva",
        "openebs.io/component": "jiva-replica",
        "openebs.io/persistent-volume": pv,
    }


def replica_labels(pv: str, version: str) -> dict[str, str]:
    """Labels put on the replica statefulset and its pods."""
    return {**replica_match_labels(pv), "openebs.io/version": version}


def controller_match_labels(pv: str) -> dict[str, str]:
    """Labels that select the controller pod of a volume."""
    return {
        "openebs.io/cas-type": "jiva",
        "openebs.io/component": "jiva-controller",
        "openebs.io/persistent-volume": pv,
    }


def controller_labels(pv: str, version: str) -> dict[str, str]:
    """Labels put on the controller deployment and its pod."""
    return {**controller_match_labels(pv), "openebs.io/version": version}


def service_labels(pv: str, version: str) -> dict[str, str]:
    """Labels put on the controller service."""
    return {
        "openebs.io/cas-type": "jiva",
        "openebs.io/component": "jiva-controller-service",
        "openebs.io/persistent-volume": pv,
        "openebs.io/version": version,
    }


def default_annotations() -> dict[str, str]:
    """Prometheus scrape annotations for the controller pod."""
    return {
        "prometheus.io/path": "/metrics",
        "prometheus.io/port": "9500",
        "prometheus.io/scrap": "true",
    }


def controller_ports() -> list[dict[str, Any]]:
    """Container ports of the jiva controller."""
    return [
        {"containerPort": 3260, "protocol": "TCP"},
        {"containerPort": 9501, "protocol": "TCP"},
    ]


def controller_service_ports() -> list[dict[str, Any]]:
    """Ports exposed by the controller service."""
    return [
        {"name": "iscsi", "port": 3260, "protocol": "TCP", "targetPort": 3260},
        {"name": "api", "port": 9501, "protocol": "TCP", "targetPort": 9501},
        {"name": "m-exporter", "port": 9500, "protocol": "TCP", "targetPort": 9500},
    ]


def replica_ports() -> list[dict[str, Any]]:
    """Container ports of a jiva replica."""
    return [
        {"containerPort": 9502, "protocol": "TCP"},
        {"containerPort": 9503, "protocol": "TCP"},
        {"containerPort": 9504, "protocol": "TCP"},
    ]


def get_image(key: str, component: str, environ: Mapping[str, str] | None = None) -> str:
    """Image for a component: the environment variable if set, else a default."""
    env = os.environ if environ is None else environ
    if key in env:
        return env[key]
    return _DEFAULT_IMAGES.get(component, "")


def ram_in_bytes(size: str) -> int:
    """Parse a human-readable size with binary units, such as "5G" or "512 MiB"."""
    match = _SIZE_RE.fullmatch(size)
    if match is None:
        raise ValueError(f"invalid size: '{size}'")
    number, prefix = match.groups()
    try:
        value = float(number)
    except ValueError as exc:
        raise ValueError(f"invalid size: '{size}'") from exc
    if prefix:
        value *= _BINARY_UNITS[prefix.lower()]
    return int(value)


def capacity_in_bytes(capacity: str) -> int:
    """Bytes in a volume capacity such as "5Gi"."""
    try:
        return ram_in_bytes(capacity.split("i")[0])
    except ValueError as exc:
        raise ValueError(
            f"failed to convert human readable size: {capacity} into int64, err: {exc}"
        ) from exc