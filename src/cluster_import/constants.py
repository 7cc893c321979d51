"""Well-known names shared by the router, the reconciler and its helpers.

Every per-cluster resource is correlated by the cluster name: it names the
ManagedCluster, the ClusterDeployment and the namespace that holds the
generated secrets and ManifestWorks.
"""

from __future__ import annotations

# --- Secrets ---

AUTO_IMPORT_SECRET_NAME = "auto-import-secret"
IMPORT_SECRET_NAME_SUFFIX = "import"

# Keys inside the import secret, applied in this order.
IMPORT_SECRET_CRDS_V1_KEY = "crdsv1.yaml"
IMPORT_SECRET_CRDS_KEY = "crds.yaml"
IMPORT_SECRET_IMPORT_KEY = "import.yaml"

# Keys inside an admin kubeconfig / auto-import secret.
KUBECONFIG_SECRET_KEY = "kubeconfig"
TOKEN_SECRET_KEY = "token"
SERVER_SECRET_KEY = "server"

# --- ManifestWorks ---

KLUSTERLET_WORKS_LABEL = "import.open-cluster-management.io/klusterlet-works"
EXPECTED_KLUSTERLET_WORKS = 2

HOSTED_KLUSTERLET_WORK_SUFFIX = "klusterlet"
HOSTED_KUBECONFIG_WORK_SUFFIX = "kubeconfig"
HOSTED_WORK_SUFFIXES = (HOSTED_KLUSTERLET_WORK_SUFFIX, HOSTED_KUBECONFIG_WORK_SUFFIX)

# --- Annotations / finalizers ---

CREATED_VIA_ANNOTATION = "open-cluster-management/created-via"
CREATED_VIA_AI = "assisted-installer"
CREATED_VIA_HIVE = "hive"
CREATED_VIA_DISCOVERY = "discovery"

KLUSTERLET_DEPLOY_MODE_ANNOTATION = "import.open-cluster-management.io/klusterlet-deploy-mode"
KLUSTERLET_DEPLOY_MODE_HOSTED = "Hosted"

IMPORT_FINALIZER = "managedcluster-import-controller.open-cluster-management.io/cleanup"

# --- Status ---

CONDITION_MANAGED_CLUSTER_IMPORT_SUCCEEDED = "ManagedClusterImportSucceeded"
REASON_MANAGED_CLUSTER_IMPORTED = "ManagedClusterImported"
REASON_MANAGED_CLUSTER_NOT_IMPORTED = "ManagedClusterNotImported"

# --- Misc ---

CONTROLLER_NAME = "clusterdeployment-controller"
FIELD_MANAGER = "cluster-import"
