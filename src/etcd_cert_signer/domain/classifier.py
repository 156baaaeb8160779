"""Decide whether an observed object is an etcd cluster member."""

from __future__ import annotations

from collections.abc import Mapping

MEMBER_LABEL_KEY = "k8s-app"
MEMBER_LABEL_VALUE = "etcd"
MEMBER_LABEL_SELECTOR = f"{MEMBER_LABEL_KEY}={MEMBER_LABEL_VALUE}"


def is_cluster_member(labels: Mapping[str, str] | None) -> bool:
    """True iff labels carry k8s-app=etcd (exact, case-sensitive)."""
    if not labels:
        return False
    return labels.get(MEMBER_LABEL_KEY) == MEMBER_LABEL_VALUE
