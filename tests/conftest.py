"""Pytest configuration and fixtures."""

import copy
from typing import Any, Dict, List, Optional

import pytest

from kube import ApiResponse, ResourceClient


def json_merge_patch(target: Any, patch: Any) -> Any:
    """RFC 7386 merge patch, as the API server applies it."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = json_merge_patch(result.get(key), value)
    return result


class FakeResourceClient(ResourceClient):
    """
    In-memory ResourceClient holding a single live resource.

    Merge patches are applied to the live resource. Responses can be
    scripted per method through `script`; a None entry in a script means
    "behave normally" for that call.
    """

    def __init__(self, live: Optional[Dict[str, Any]] = None):
        self.live = copy.deepcopy(live)
        self.calls: List[Dict[str, Any]] = []
        self.script: Dict[str, List[Optional[ApiResponse]]] = {}
        self.headers: Dict[str, Optional[str]] = {}
        self.secrets: Dict[str, Dict[str, Any]] = {}

    def uri(self, name=None, namespace=None, status=False):
        path = "/apis/deploy.razee.io/v1alpha2"
        if namespace:
            path += f"/namespaces/{namespace}"
        path += "/mustachetemplates"
        if name:
            path += f"/{name}"
            if status:
                path += "/status"
        return path

    def add_header(self, key, value):
        # None clears the header, as KubeResourceClient drops None values
        if value is None:
            self.headers.pop(key, None)
        else:
            self.headers[key] = value

    def calls_of(self, method: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method]

    def _record(self, method: str, **kwargs) -> Optional[ApiResponse]:
        self.calls.append({"method": method, **copy.deepcopy(kwargs)})
        scripted = self.script.get(method)
        if scripted:
            return scripted.pop(0)
        return None

    def _bump_version(self):
        metadata = self.live.setdefault("metadata", {})
        metadata["resourceVersion"] = str(int(metadata.get("resourceVersion", "0")) + 1)

    async def get(self, name, namespace=None):
        scripted = self._record("get", name=name, namespace=namespace)
        if scripted is not None:
            return scripted
        if self.live is None:
            return ApiResponse(404, {"message": "not found"})
        return ApiResponse(200, copy.deepcopy(self.live))

    async def put(self, body):
        scripted = self._record("put", body=body)
        if scripted is not None:
            return scripted
        self.live = copy.deepcopy(body)
        self._bump_version()
        return ApiResponse(200, copy.deepcopy(self.live))

    async def post(self, body):
        scripted = self._record("post", body=body)
        if scripted is not None:
            return scripted
        self.live = copy.deepcopy(body)
        self._bump_version()
        return ApiResponse(201, copy.deepcopy(self.live))

    async def _merge(self, method, name, namespace, body, status, headers):
        scripted = self._record(
            method,
            name=name,
            namespace=namespace,
            body=body,
            status=status,
            headers=headers,
        )
        if scripted is not None:
            return scripted
        if self.live is None:
            return ApiResponse(404, {"message": "not found"})
        self.live = json_merge_patch(self.live, body)
        self._bump_version()
        return ApiResponse(200, copy.deepcopy(self.live))

    async def merge_patch(self, name, namespace, body, status=False, headers=None):
        return await self._merge("merge_patch", name, namespace, body, status, headers)

    async def strategic_merge_patch(
        self, name, namespace, body, status=False, headers=None
    ):
        return await self._merge(
            "strategic_merge_patch", name, namespace, body, status, headers
        )

    async def patch(self, name, namespace, body, status=False, headers=None):
        scripted = self._record(
            "patch",
            name=name,
            namespace=namespace,
            body=body,
            status=status,
            headers=headers,
        )
        if scripted is not None:
            return scripted
        return ApiResponse(200, copy.deepcopy(self.live))

    async def request(self, path):
        scripted = self._record("request", path=path)
        if scripted is not None:
            return scripted
        if path in self.secrets:
            return ApiResponse(200, copy.deepcopy(self.secrets[path]))
        return ApiResponse(404, {"message": "not found"})


@pytest.fixture
def make_client():
    """Factory for FakeResourceClient instances."""
    return FakeResourceClient


@pytest.fixture
def sample_resource():
    """A razee custom resource as delivered by a watch."""
    return {
        "apiVersion": "deploy.razee.io/v1alpha2",
        "kind": "MustacheTemplate",
        "metadata": {
            "name": "mt-sample",
            "namespace": "razee-test",
            "resourceVersion": "100",
            "labels": {"app": "demo"},
            "annotations": {},
        },
        "spec": {
            "clusterAuth": {"impersonateUser": "razeedeploy"},
            "env": [{"name": "region", "value": "us-south"}],
        },
        "status": {},
    }


@pytest.fixture
def sample_child():
    """A child ConfigMap manifest as an apply() target."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": "app-config",
            "namespace": "razee-test",
            "labels": {"app": "demo"},
        },
        "data": {"mode": "blue", "replicas": "3"},
    }
