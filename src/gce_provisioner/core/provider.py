"""GCP Provider - Connection configuration for Compute Engine."""

from functools import cached_property
from pathlib import Path
from typing import TYPE_CHECKING, Self

from google.cloud import compute_v1
from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from gce_provisioner.engine.adapters import ComputeInstanceAdapter


class GCPProvider(BaseModel):
    """Connection configuration for Compute Engine in one project and zone.

    Provide ``credentials_file`` to authenticate with a service account key,
    or leave it unset to use application default credentials.  Use
    `from_client` to inject a pre-built client.

    Examples:
        # Service account key
        provider = GCPProvider(
            project="my-project",
            zone="europe-west1-b",
            credentials_file=Path("service-account.json"),
        )

        # Injected client (tests / embedding)
        provider = GCPProvider.from_client(client, project="p", zone="z")
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    project: str
    zone: str
    credentials_file: Path | None = None
    operation_timeout: float = 300.0

    # Injected client (for embedding / testing)
    _injected_client: compute_v1.InstancesClient | None = None

    @classmethod
    def from_client(cls, client: compute_v1.InstancesClient, *, project: str, zone: str) -> Self:
        """Create a provider with an injected instances client."""
        provider = cls(project=project, zone=zone)
        provider._injected_client = client
        return provider

    @cached_property
    def client(self) -> compute_v1.InstancesClient:
        """Get the Compute Engine instances client."""
        if self._injected_client is not None:
            return self._injected_client

        if self.credentials_file is not None:
            return compute_v1.InstancesClient.from_service_account_file(
                str(self.credentials_file)
            )
        return compute_v1.InstancesClient()

    @cached_property
    def instances(self) -> "ComputeInstanceAdapter":
        from gce_provisioner.engine.adapters import ComputeInstanceAdapter

        return ComputeInstanceAdapter(
            self.client,
            project=self.project,
            zone=self.zone,
            operation_timeout=self.operation_timeout,
        )
