"""
Unit tests for the Kubernetes API adapter — pods and secrets over httpx.

Uses respx to mock httpx HTTP calls (never makes real HTTP requests).

Test categories per adapter:
  - Success: API object → domain value (base64 decoded, labels/annotations kept)
  - Requests: paths, bearer token, label selector, merge-patch body
  - Not found: 404 → Result.failure(NOT_FOUND)
  - Errors: 409/500/timeout → Result.failure(FETCH_ERROR) (never raises)
"""

from __future__ import annotations

import base64
import json

import httpx
import pytest
import respx
from railway import ErrorCode, ResultAssertions

from etcd_cert_signer.adapters.kube_client import (
    MERGE_PATCH_CONTENT_TYPE,
    HttpMemberSource,
    HttpSecretStore,
    KubernetesConnection,
    merge_patch_for,
)
from etcd_cert_signer.domain.models import SecretRecord

# ─────────────────────── Fixtures ───────────────────────

API_URL = "https://kubernetes.test:6443"
TOKEN = "sa-token"
NAMESPACE = "openshift-etcd"
POD_URL = f"{API_URL}/api/v1/namespaces/{NAMESPACE}/pods/etcd-0"
SECRET_URL = f"{API_URL}/api/v1/namespaces/{NAMESPACE}/secrets/etcd-0-peer"


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _pod(name: str = "etcd-0", labels: dict[str, str] | None = None) -> dict:
    return {
        "kind": "Pod",
        "metadata": {"name": name, "namespace": NAMESPACE, "labels": labels or {"k8s-app": "etcd"}},
    }


def _secret(data: dict[str, bytes] | None = None, resource_version: str = "41") -> dict:
    return {
        "kind": "Secret",
        "metadata": {
            "name": "etcd-0-peer",
            "namespace": NAMESPACE,
            "resourceVersion": resource_version,
            "annotations": {"auth.openshift.io/certificate-hostnames": "etcd-0"},
        },
        "data": {key: _b64(value) for key, value in (data or {}).items()},
        "type": "kubernetes.io/tls",
    }


@pytest.fixture()
def connection() -> KubernetesConnection:
    return KubernetesConnection(api_url=API_URL, token=TOKEN, verify=False, timeout=5)


@pytest.fixture()
def member_source(connection: KubernetesConnection) -> HttpMemberSource:
    return HttpMemberSource(connection)


@pytest.fixture()
def secret_store(connection: KubernetesConnection) -> HttpSecretStore:
    return HttpSecretStore(connection)


# ═══════════════════════════════════════════════════════════════════════
# Member Source (pods)
# ═══════════════════════════════════════════════════════════════════════


class TestFetchMember:
    @respx.mock
    def test_returns_member_with_labels(self, member_source: HttpMemberSource) -> None:
        """
        GIVEN the API server returns the etcd-0 pod
        WHEN fetch_member is called
        THEN it returns a MemberIdentity carrying name, namespace and labels.
        """
        respx.get(POD_URL).mock(return_value=httpx.Response(200, json=_pod()))

        member = ResultAssertions.assert_success(member_source.fetch_member(NAMESPACE, "etcd-0"))

        assert member.name == "etcd-0"
        assert member.namespace == NAMESPACE
        assert member.labels == {"k8s-app": "etcd"}

    @respx.mock
    def test_sends_bearer_token(self, member_source: HttpMemberSource) -> None:
        route = respx.get(POD_URL).mock(return_value=httpx.Response(200, json=_pod()))

        member_source.fetch_member(NAMESPACE, "etcd-0")

        assert route.calls.last.request.headers["Authorization"] == f"Bearer {TOKEN}"

    @respx.mock
    def test_pod_without_labels(self, member_source: HttpMemberSource) -> None:
        body = {"metadata": {"name": "etcd-0", "namespace": NAMESPACE}}
        respx.get(POD_URL).mock(return_value=httpx.Response(200, json=body))

        member = ResultAssertions.assert_success(member_source.fetch_member(NAMESPACE, "etcd-0"))

        assert dict(member.labels) == {}

    @respx.mock
    def test_404_returns_not_found(self, member_source: HttpMemberSource) -> None:
        respx.get(POD_URL).mock(return_value=httpx.Response(404, json={"reason": "NotFound"}))

        result = member_source.fetch_member(NAMESPACE, "etcd-0")

        ResultAssertions.assert_failure(result, ErrorCode.NOT_FOUND)
        ResultAssertions.assert_failure_message_contains(result, "etcd-0")

    @respx.mock
    def test_500_returns_fetch_error(self, member_source: HttpMemberSource) -> None:
        respx.get(POD_URL).mock(return_value=httpx.Response(500))

        ResultAssertions.assert_failure(member_source.fetch_member(NAMESPACE, "etcd-0"), ErrorCode.FETCH_ERROR)


class TestListMembers:
    @respx.mock
    def test_namespaced_list_uses_label_selector(self, member_source: HttpMemberSource) -> None:
        route = respx.get(f"{API_URL}/api/v1/namespaces/{NAMESPACE}/pods").mock(
            return_value=httpx.Response(200, json={"items": [_pod("etcd-0"), _pod("etcd-1")]})
        )

        members = ResultAssertions.assert_success(member_source.list_members(NAMESPACE))

        assert [m.name for m in members] == ["etcd-0", "etcd-1"]
        assert route.calls.last.request.url.params["labelSelector"] == "k8s-app=etcd"

    @respx.mock
    def test_cluster_wide_list(self, member_source: HttpMemberSource) -> None:
        route = respx.get(f"{API_URL}/api/v1/pods").mock(
            return_value=httpx.Response(200, json={"items": []})
        )

        members = ResultAssertions.assert_success(member_source.list_members())

        assert members == []
        assert route.called

    @respx.mock
    def test_403_returns_fetch_error(self, member_source: HttpMemberSource) -> None:
        respx.get(f"{API_URL}/api/v1/pods").mock(return_value=httpx.Response(403))

        ResultAssertions.assert_failure(member_source.list_members(), ErrorCode.FETCH_ERROR)


# ═══════════════════════════════════════════════════════════════════════
# Secret Store
# ═══════════════════════════════════════════════════════════════════════


class TestFetchRecord:
    @respx.mock
    def test_decodes_secret(self, secret_store: HttpSecretStore) -> None:
        """
        GIVEN a secret whose data holds base64 tls.crt and tls.key
        WHEN fetch_record is called
        THEN the record carries decoded bytes, annotations and resourceVersion.
        """
        respx.get(SECRET_URL).mock(
            return_value=httpx.Response(200, json=_secret({"tls.crt": b"CERT", "tls.key": b"KEY"}))
        )

        record = ResultAssertions.assert_success(secret_store.fetch_record(NAMESPACE, "etcd-0-peer"))

        assert record.certificate == b"CERT"
        assert record.private_key == b"KEY"
        assert record.resource_version == "41"
        assert record.annotations["auth.openshift.io/certificate-hostnames"] == "etcd-0"

    @respx.mock
    def test_secret_without_data(self, secret_store: HttpSecretStore) -> None:
        body = _secret()
        del body["data"]
        respx.get(SECRET_URL).mock(return_value=httpx.Response(200, json=body))

        record = ResultAssertions.assert_success(secret_store.fetch_record(NAMESPACE, "etcd-0-peer"))

        assert not record.has_certificate

    @respx.mock
    def test_404_returns_not_found(self, secret_store: HttpSecretStore) -> None:
        respx.get(SECRET_URL).mock(return_value=httpx.Response(404))

        ResultAssertions.assert_failure(secret_store.fetch_record(NAMESPACE, "etcd-0-peer"), ErrorCode.NOT_FOUND)

    @respx.mock
    def test_timeout_is_retried_then_fetch_error(self, secret_store: HttpSecretStore) -> None:
        """
        GIVEN the API server keeps timing out
        WHEN fetch_record is called
        THEN the GET is attempted 3 times and the result is FETCH_ERROR (never raises).
        """
        route = respx.get(SECRET_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        result = secret_store.fetch_record(NAMESPACE, "etcd-0-peer")

        ResultAssertions.assert_failure(result, ErrorCode.FETCH_ERROR)
        assert route.call_count == 3

    @respx.mock
    def test_malformed_body_returns_fetch_error(self, secret_store: HttpSecretStore) -> None:
        respx.get(SECRET_URL).mock(return_value=httpx.Response(200, content=b"not json"))

        ResultAssertions.assert_failure(secret_store.fetch_record(NAMESPACE, "etcd-0-peer"), ErrorCode.FETCH_ERROR)


class TestUpdateRecord:
    def _record(self) -> SecretRecord:
        return SecretRecord(
            name="etcd-0-peer",
            namespace=NAMESPACE,
            annotations={"auth.openshift.io/certificate-issuer": "etcd-signer"},
            data={"tls.crt": b"NEW-CERT", "tls.key": b"NEW-KEY"},
            resource_version="41",
        )

    @respx.mock
    def test_sends_single_merge_patch(self, secret_store: HttpSecretStore) -> None:
        """
        GIVEN a record with new certificate material and annotations
        WHEN update_record is called
        THEN one PATCH is sent as a JSON merge patch with base64 data,
             annotations and the resourceVersion that was read.
        """
        route = respx.patch(SECRET_URL).mock(
            return_value=httpx.Response(
                200, json=_secret({"tls.crt": b"NEW-CERT", "tls.key": b"NEW-KEY"}, resource_version="42")
            )
        )

        stored = ResultAssertions.assert_success(secret_store.update_record(self._record()))

        assert route.call_count == 1
        request = route.calls.last.request
        assert request.headers["Content-Type"] == MERGE_PATCH_CONTENT_TYPE
        body = json.loads(request.content)
        assert body["data"] == {"tls.crt": _b64(b"NEW-CERT"), "tls.key": _b64(b"NEW-KEY")}
        assert body["metadata"]["annotations"] == {"auth.openshift.io/certificate-issuer": "etcd-signer"}
        assert body["metadata"]["resourceVersion"] == "41"
        assert stored.resource_version == "42"
        assert stored.certificate == b"NEW-CERT"

    @respx.mock
    def test_conflict_returns_fetch_error(self, secret_store: HttpSecretStore) -> None:
        respx.patch(SECRET_URL).mock(return_value=httpx.Response(409, json={"reason": "Conflict"}))

        ResultAssertions.assert_failure(secret_store.update_record(self._record()), ErrorCode.FETCH_ERROR)

    @respx.mock
    def test_timed_out_patch_is_not_resent(self, secret_store: HttpSecretStore) -> None:
        """
        GIVEN the PATCH times out (it may still have been applied server-side)
        WHEN update_record is called
        THEN it is sent exactly once and reported as FETCH_ERROR for the next reconcile.
        """
        route = respx.patch(SECRET_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        result = secret_store.update_record(self._record())

        ResultAssertions.assert_failure(result, ErrorCode.FETCH_ERROR)
        assert route.call_count == 1

    def test_patch_omits_unknown_resource_version(self) -> None:
        record = SecretRecord(name="etcd-0-peer", namespace=NAMESPACE)
        assert "resourceVersion" not in merge_patch_for(record)["metadata"]


class TestConnection:
    def test_no_token_means_no_authorization_header(self) -> None:
        with KubernetesConnection(api_url=API_URL).client() as client:
            assert "Authorization" not in client.headers

    def test_trailing_slash_is_ignored(self) -> None:
        with KubernetesConnection(api_url=f"{API_URL}/", token=TOKEN).client() as client:
            assert str(client.base_url).rstrip("/") == API_URL
