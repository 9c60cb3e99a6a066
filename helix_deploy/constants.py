# /*
# Copyright 2026 The Helix Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Pinned versions, names, ports and timeouts shared across stages.

Tool versions, download URL templates and container images live in
``dependencies.yaml`` beside this module; everything else is a plain
constant.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

DEPENDENCIES_FILE = Path(__file__).resolve().parent / "dependencies.yaml"


def load_dependencies(path: Path = DEPENDENCIES_FILE) -> dict[str, Any]:
    """Read the pinned tool and image table.

    Raises:
        ValueError: If the file has no ``tools`` mapping.
    """
    with path.open() as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data.get("tools"), dict):
        raise ValueError(f"{path}: expected a 'tools' mapping")
    return data


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Look up a nested entry, e.g. ``dep_value("tools", "kind", "version")``."""
    node: Any = DEPENDENCIES
    for key in keys:
        try:
            node = node[key]
        except (KeyError, TypeError):
            return default
    return default if node is None else node


# -- Tools --
TOOL_KUBECTL = "kubectl"
TOOL_ISTIOCTL = "istioctl"
TOOL_KIND = "kind"
TOOL_MINIKUBE = "minikube"
BASE_TOOLS = (TOOL_KUBECTL, TOOL_ISTIOCTL)

DEFAULT_BIN_DIR = "/usr/local/bin"
DOWNLOAD_TIMEOUT_SECONDS = 300
VERSION_PROBE_TIMEOUT_SECONDS = 15

# -- Cluster drivers --
DRIVER_KIND = "kind"
DRIVER_MINIKUBE = "minikube"
DRIVER_EXISTING = "existing"
DEFAULT_DRIVER_PREFERENCE = (DRIVER_KIND, DRIVER_MINIKUBE)
DEFAULT_CLUSTER_NAME = "ecommerce-cluster"
DEFAULT_MINIKUBE_VM_DRIVER = "docker"
DEFAULT_CLUSTER_CREATE_TIMEOUT_SECONDS = 300
DEFAULT_CLUSTER_CREATE_MAX_RETRIES = 2
CLUSTER_CREATE_RETRY_WAIT_SECONDS = 10
CLUSTER_PROBE_TIMEOUT_SECONDS = 10

# -- Mesh --
NS_ISTIO_SYSTEM = "istio-system"
ISTIOD_DEPLOYMENT = "istiod"
INGRESS_GATEWAY_DEPLOYMENT = "istio-ingressgateway"
INGRESS_GATEWAY_SERVICE = "istio-ingressgateway"
LABEL_MESH_PROFILE = "helix.dev/istio-profile"
ISTIO_FULL_PROFILE = "demo"
ISTIO_CONSTRAINED_PROFILE = "default"
MESH_READY_SELECTORS = ("app=istiod", "app=istio-ingressgateway")
DEFAULT_MESH_READY_TIMEOUT_SECONDS = 180
MESH_READY_POLL_INTERVAL_SECONDS = 5
DEFAULT_INGRESS_SERVICE_TYPE = "NodePort"
ISTIO_INSTALL_TIMEOUT_SECONDS = 600

# -- Namespace --
DEFAULT_NAMESPACE = "helix"
LABEL_ISTIO_INJECTION = "istio-injection"

# -- Application --
DATASTORE_NAME = "mongo"
DATASTORE_PORT = 27017
DATASTORE_DATABASE = "ecommerceDB"
DATASTORE_PROTOCOL = "mongodb"
DATASTORE_MOUNT_PATH = "/data/db"
DATASTORE_CLAIM_NAME = "mongo-persistent-storage"
DATASTORE_ACCESS_MODE = "ReadWriteOnce"
DEFAULT_DATASTORE_STORAGE = "1Gi"
DATASTORE_ENV_VAR = "MONGO_URI"

BACKEND_NAME = "ecommerce-backend"
BACKEND_CONTAINER_PORT = 5000
FRONTEND_NAME = "ecommerce-frontend"
FRONTEND_CONTAINER_PORT = 80
SERVICE_PORT = 80

GATEWAY_NAME = "ecommerce-gateway"
ROUTING_TABLE_NAME = "ecommerce-virtualservice"
INGRESS_SELECTOR = {"istio": "ingressgateway"}
INGRESS_HTTP_PORT = 80
DEFAULT_API_PREFIX = "/api"
API_EXAMPLE_PATH = "hello"
CLUSTER_DOMAIN = "svc.cluster.local"

# -- Reconcile --
DEFAULT_APPLY_WORKERS = 4
DEFAULT_APPLY_MAX_ATTEMPTS = 5
DEFAULT_KUBECTL_TIMEOUT_SECONDS = 60
APPLY_BACKOFF_MIN_SECONDS = 1
APPLY_BACKOFF_MAX_SECONDS = 8

TRANSIENT_ERROR_MARKERS = (
    "connection refused",
    "connection reset",
    "i/o timeout",
    "tls handshake timeout",
    "unable to connect to the server",
    "the server is currently unable to handle the request",
    "serviceunavailable",
    "too many requests",
    "etcdserver: request timed out",
    "context deadline exceeded",
    "unexpected eof",
)
CONFLICT_ERROR_MARKERS = (
    "field is immutable",
    "updates to statefulset spec for fields other than",
)
NOT_FOUND_MARKERS = ("notfound", "not found", "the server doesn't have a resource type")
