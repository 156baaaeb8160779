"""
Kubernetes API adapter — pods and secrets over the REST API via httpx.

Adapter layer — implements the MemberSource and RecordStore ports.

Endpoints:
  GET   /api/v1/namespaces/{ns}/pods/{name}          → MemberIdentity
  GET   /api/v1[/namespaces/{ns}]/pods?labelSelector  → list[MemberIdentity]
  GET   /api/v1/namespaces/{ns}/secrets/{name}       → SecretRecord
  PATCH /api/v1/namespaces/{ns}/secrets/{name}       ← merge patch (data + annotations)

Secret data is base64 on the wire and bytes in the domain. Updates send the
resourceVersion that was read, so a concurrent writer makes the patch fail
with 409 instead of being overwritten.

Retry/backoff via tenacity on transient errors (network, timeout), for reads only.
HTTP 404 becomes NOT_FOUND; any other error becomes FETCH_ERROR.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
import structlog
from railway import ErrorCode, FailureDescription, Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from etcd_cert_signer.domain.classifier import MEMBER_LABEL_SELECTOR
from etcd_cert_signer.domain.models import MemberIdentity, SecretRecord

T = TypeVar("T")

log = structlog.get_logger()

MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"

_transient_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=0.1, max=30),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
    reraise=True,
)


@dataclass(frozen=True, slots=True)
class KubernetesConnection:
    """How to reach the API server."""

    api_url: str
    token: str | None = None
    verify: bool | str = True
    timeout: int = 30

    def client(self) -> httpx.Client:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.Client(
            base_url=self.api_url.rstrip("/"),
            headers=headers,
            verify=self.verify,
            timeout=self.timeout,
        )


def _guarded(
    computation: Callable[[], T],
    resource: str,
    namespace: str,
    name: str,
) -> Result[T]:
    """Run an API call, mapping 404 to NOT_FOUND and every other error to FETCH_ERROR."""

    def _reclassify(err: FailureDescription) -> FailureDescription:
        exc = err.exception
        if isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code == 404:
            return FailureDescription(
                ErrorCode.NOT_FOUND, f"{resource} {namespace}/{name} not found", exc
            )
        return err

    return Result.from_computation(
        computation,
        ErrorCode.FETCH_ERROR,
        f"Error accessing {resource} {namespace}/{name}",
    ).map_failure(_reclassify)


def member_from_pod(pod: dict[str, Any]) -> MemberIdentity:
    metadata = pod["metadata"]
    return MemberIdentity(
        name=metadata["name"],
        namespace=metadata["namespace"],
        labels=metadata.get("labels") or {},
    )


def record_from_secret(secret: dict[str, Any]) -> SecretRecord:
    metadata = secret["metadata"]
    return SecretRecord(
        name=metadata["name"],
        namespace=metadata["namespace"],
        annotations=metadata.get("annotations") or {},
        data={key: base64.b64decode(value) for key, value in (secret.get("data") or {}).items()},
        resource_version=metadata.get("resourceVersion"),
    )


def merge_patch_for(record: SecretRecord) -> dict[str, Any]:
    """The JSON merge patch that stores a record's data and annotations."""
    metadata: dict[str, Any] = {"annotations": dict(record.annotations)}
    if record.resource_version is not None:
        metadata["resourceVersion"] = record.resource_version
    return {
        "metadata": metadata,
        "data": {key: base64.b64encode(value).decode("ascii") for key, value in record.data.items()},
    }


class HttpMemberSource:
    """
    Look up etcd member pods.

    Implements the MemberSource port.
    """

    def __init__(self, connection: KubernetesConnection) -> None:
        self._connection = connection

    def fetch_member(self, namespace: str, name: str) -> Result[MemberIdentity]:
        return _guarded(
            lambda: member_from_pod(self._get(f"/api/v1/namespaces/{namespace}/pods/{name}")),
            "pod",
            namespace,
            name,
        )

    def list_members(self, namespace: str | None = None) -> Result[list[MemberIdentity]]:
        """List pods labelled k8s-app=etcd, in one namespace or cluster-wide."""
        path = f"/api/v1/namespaces/{namespace}/pods" if namespace else "/api/v1/pods"
        return _guarded(
            lambda: [
                member_from_pod(pod)
                for pod in self._get(path, params={"labelSelector": MEMBER_LABEL_SELECTOR})["items"]
            ],
            "pods",
            namespace or "*",
            MEMBER_LABEL_SELECTOR,
        ).peek(lambda members: log.info("kube.members_listed", namespace=namespace or "*", count=len(members)))

    @_transient_retry
    def _get(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any]:
        """HTTP GET with retry — exceptions caught by _guarded."""
        with self._connection.client() as client:
            response = client.get(path, params=params)
            response.raise_for_status()
            body: dict[str, Any] = response.json()
            return body


class HttpSecretStore:
    """
    Read and write secrets holding CA and member certificate material.

    Implements the RecordStore port.
    """

    def __init__(self, connection: KubernetesConnection) -> None:
        self._connection = connection

    def fetch_record(self, namespace: str, name: str) -> Result[SecretRecord]:
        return _guarded(
            lambda: record_from_secret(self._do_get(namespace, name)),
            "secret",
            namespace,
            name,
        )

    def update_record(self, record: SecretRecord) -> Result[SecretRecord]:
        """Store data and annotations in one merge patch; 409 on a concurrent write."""
        return _guarded(
            lambda: record_from_secret(self._do_patch(record)),
            "secret",
            record.namespace,
            record.name,
        ).peek(
            lambda stored: log.info(
                "kube.secret_updated",
                secret=f"{stored.namespace}/{stored.name}",
                resource_version=stored.resource_version,
            )
        )

    @_transient_retry
    def _do_get(self, namespace: str, name: str) -> dict[str, Any]:
        with self._connection.client() as client:
            response = client.get(f"/api/v1/namespaces/{namespace}/secrets/{name}")
            response.raise_for_status()
            body: dict[str, Any] = response.json()
            return body

    # Not retried: a PATCH that timed out may still have been applied, and a
    # resend would then conflict on resourceVersion. The next reconcile reads
    # the record again instead.
    def _do_patch(self, record: SecretRecord) -> dict[str, Any]:
        with self._connection.client() as client:
            response = client.patch(
                f"/api/v1/namespaces/{record.namespace}/secrets/{record.name}",
                content=json.dumps(merge_patch_for(record)).encode("utf-8"),
                headers={"Content-Type": MERGE_PATCH_CONTENT_TYPE},
            )
            response.raise_for_status()
            body: dict[str, Any] = response.json()
            return body
