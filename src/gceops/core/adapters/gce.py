from __future__ import annotations

from datetime import datetime

from google.cloud import compute_v1

from gceops.core.machines import Machine, MachineSpec, MachineState
from gceops.core.operations import Operation, OperationKind, OperationStatus

_OPERATION_STATUS = {
    "PENDING": OperationStatus.PENDING,
    "RUNNING": OperationStatus.RUNNING,
    "DONE": OperationStatus.DONE,
}

_INSTANCE_STATE = {
    "PROVISIONING": MachineState.PROVISIONING,
    "STAGING": MachineState.PROVISIONING,
    "RUNNING": MachineState.READY,
    "REPAIRING": MachineState.PROVISIONING,
    "STOPPING": MachineState.STOPPING,
    "SUSPENDING": MachineState.STOPPING,
    "STOPPED": MachineState.FAILED,
    "SUSPENDED": MachineState.FAILED,
    "TERMINATED": MachineState.FAILED,
}


def _enum_name(value) -> str:
    """Return the string name of a proto enum or plain string status."""
    if value is None:
        return ""
    return getattr(value, "name", None) or str(value)


def _parse_time(raw: str | None) -> datetime | None:
    """Parse an RFC 3339 timestamp as returned by the Compute API."""
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


# Container-Optimized OS ships docker, which the default launch command needs.
DEFAULT_IMAGE = "cos-cloud/cos-stable"


def _image_uri(image: str) -> str:
    """
    Normalize an image reference for a boot disk.

    - ``projects/...`` and full URLs are passed through
    - ``<project>/<family>``, e.g. ``cos-cloud/cos-stable``, names a family
      in that image project
    - a bare family or ``family/<family>`` is resolved against debian-cloud,
      whose images do not ship docker
    """
    if image.startswith(("projects/", "https://", "global/")):
        return image
    if image.startswith("family/"):
        return f"projects/debian-cloud/global/images/{image}"
    if "/" in image:
        project, family = image.split("/", 1)
        return f"projects/{project}/global/images/family/{family}"
    return f"projects/debian-cloud/global/images/family/{image}"


class GceAdapter:
    """Adapter around the Google Compute Engine instances and zone operations APIs."""

    def __init__(
        self,
        project: str,
        zone: str,
        *,
        instances_client: compute_v1.InstancesClient | None = None,
        operations_client: compute_v1.ZoneOperationsClient | None = None,
    ):
        """Create an adapter for one project/zone."""
        self.project = project
        self.zone = zone
        self.instances = instances_client or compute_v1.InstancesClient()
        self.operations = operations_client or compute_v1.ZoneOperationsClient()

    def _instance_resource(self, spec: MachineSpec) -> compute_v1.Instance:
        """Build the Instance body for an insert request."""
        disk = compute_v1.AttachedDisk(
            boot=True,
            auto_delete=True,
            initialize_params=compute_v1.AttachedDiskInitializeParams(
                source_image=_image_uri(spec.boot_image),
                disk_size_gb=spec.disk_size_gb,
            ),
        )
        nic = compute_v1.NetworkInterface(
            network="global/networks/default",
            access_configs=[
                compute_v1.AccessConfig(name="External NAT", type_="ONE_TO_ONE_NAT")
            ],
        )
        scheduling = compute_v1.Scheduling(
            preemptible=spec.preemptible,
            automatic_restart=not spec.preemptible,
            on_host_maintenance="TERMINATE" if spec.preemptible else "MIGRATE",
        )
        return compute_v1.Instance(
            name=spec.name,
            machine_type=f"zones/{self.zone}/machineTypes/{spec.machine_type}",
            disks=[disk],
            network_interfaces=[nic],
            scheduling=scheduling,
            labels=dict(spec.labels or {}),
        )

    def _to_operation(self, raw, *, target: str, kind: OperationKind) -> Operation:
        """Map a compute Operation to the core Operation model."""
        status = _OPERATION_STATUS.get(_enum_name(raw.status), OperationStatus.PENDING)
        error = None
        errors = getattr(getattr(raw, "error", None), "errors", None) or []
        if errors:
            status = OperationStatus.ERROR
            error = "; ".join(
                f"{getattr(e, 'code', '')}: {getattr(e, 'message', '')}".strip(": ")
                for e in errors
            )
        return Operation(
            id=str(raw.name),
            target=target,
            kind=kind,
            status=status,
            started_at=_parse_time(getattr(raw, "start_time", None)),
            ended_at=(
                _parse_time(getattr(raw, "end_time", None))
                if status in (OperationStatus.DONE, OperationStatus.ERROR)
                else None
            ),
            error=error,
        )

    def _to_machine(self, raw) -> Machine:
        """Map a compute Instance to the core Machine model."""
        endpoint = None
        for nic in getattr(raw, "network_interfaces", None) or []:
            for ac in getattr(nic, "access_configs", None) or []:
                if getattr(ac, "nat_i_p", None):
                    endpoint = ac.nat_i_p
                    break
            if endpoint is None and getattr(nic, "network_i_p", None):
                endpoint = nic.network_i_p
            if endpoint:
                break

        status = _enum_name(raw.status)
        state = _INSTANCE_STATE.get(status, MachineState.PROVISIONING)
        scheduling = getattr(raw, "scheduling", None)
        return Machine(
            name=raw.name,
            state=state,
            endpoint=endpoint if state == MachineState.READY else None,
            error=f"instance is {status}" if state == MachineState.FAILED else None,
            labels=dict(getattr(raw, "labels", None) or {}),
            preemptible=bool(getattr(scheduling, "preemptible", False)),
        )

    def create_vm(self, spec: MachineSpec) -> Operation:
        """Request creation of an instance and return its insert operation."""
        raw = self.instances.insert_unary(
            project=self.project,
            zone=self.zone,
            instance_resource=self._instance_resource(spec),
        )
        return self._to_operation(raw, target=spec.name, kind=OperationKind.INSERT)

    def delete_vm(self, name: str) -> Operation:
        """Request deletion of an instance and return its delete operation."""
        raw = self.instances.delete_unary(
            project=self.project, zone=self.zone, instance=name
        )
        return self._to_operation(raw, target=name, kind=OperationKind.DELETE)

    def get_operation(self, operation: Operation) -> Operation:
        """Return a fresh snapshot of a zone operation."""
        raw = self.operations.get(
            project=self.project, zone=self.zone, operation=operation.id
        )
        return self._to_operation(raw, target=operation.target, kind=operation.kind)

    def list_vms(self) -> list[Machine]:
        """Return all instances in the configured zone."""
        return [
            self._to_machine(i)
            for i in self.instances.list(project=self.project, zone=self.zone)
            if getattr(i, "name", None)
        ]
