"""Remote cluster protocols.

A RemoteClientFactory turns a credential Secret into a RemoteCluster: a
client for the managed cluster's API plus the resource mapper it needs to
apply arbitrary manifests.  Any failure to build or use one is opaque to
the reconciler and always retryable.
"""

from __future__ import annotations

import threading
from typing import Any, Protocol, runtime_checkable

from cluster_import.models import Secret


class RemoteClientError(Exception):
    """Raised when a remote cluster client can't be built or used."""


class ApplyCancelled(RemoteClientError):
    """Raised when an apply is aborted by the controller shutting down."""


@runtime_checkable
class RemoteCluster(Protocol):
    """A client for one managed cluster."""

    def apply(
        self,
        manifests: list[dict[str, Any]],
        stop: threading.Event | None = None,
    ) -> list[str]:
        """Apply *manifests* in order.  Returns ``Kind/name`` of each applied object.

        Setting *stop* aborts before the next manifest with ApplyCancelled.
        """
        ...


@runtime_checkable
class RemoteClientFactory(Protocol):
    """Builds RemoteCluster clients from credential secrets."""

    def build(self, secret: Secret) -> RemoteCluster:
        ...
