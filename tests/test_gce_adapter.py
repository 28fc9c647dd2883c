from types import SimpleNamespace

from gceops.core.adapters.gce import DEFAULT_IMAGE, GceAdapter, _image_uri
from gceops.core.machines import MachineSpec, MachineState
from gceops.core.operations import Operation, OperationKind, OperationStatus


def _raw_op(name="op-1", status="RUNNING", errors=None, end_time=None):
    return SimpleNamespace(
        name=name,
        status=status,
        error=SimpleNamespace(errors=errors or []),
        start_time="2026-01-01T10:00:00Z",
        end_time=end_time,
    )


class _InstancesStub:
    def __init__(self, instances=()):
        self.calls = []
        self.instances = list(instances)

    def insert_unary(self, **kwargs):
        self.calls.append(("insert", kwargs))
        return _raw_op(name=f"op-insert-{kwargs['instance_resource'].name}")

    def delete_unary(self, **kwargs):
        self.calls.append(("delete", kwargs))
        return _raw_op(name=f"op-delete-{kwargs['instance']}", status="PENDING")

    def list(self, **kwargs):
        self.calls.append(("list", kwargs))
        return self.instances


class _OperationsStub:
    def __init__(self, raw):
        self.raw = raw
        self.calls = []

    def get(self, **kwargs):
        self.calls.append(kwargs)
        return self.raw


def _adapter(instances=None, operations=None):
    return GceAdapter(
        "my-project",
        "us-central1-a",
        instances_client=instances or _InstancesStub(),
        operations_client=operations or _OperationsStub(_raw_op()),
    )


def _instance(name, status, nat=None, internal=None, preemptible=False, labels=None):
    return SimpleNamespace(
        name=name,
        status=status,
        network_interfaces=[
            SimpleNamespace(
                network_i_p=internal,
                access_configs=[SimpleNamespace(nat_i_p=nat)] if nat else [],
            )
        ],
        scheduling=SimpleNamespace(preemptible=preemptible),
        labels=labels or {},
    )


def test_image_uri_resolution():
    assert _image_uri("debian-12") == "projects/debian-cloud/global/images/family/debian-12"
    assert _image_uri("family/debian-12") == "projects/debian-cloud/global/images/family/debian-12"
    assert _image_uri("projects/p/global/images/worker") == "projects/p/global/images/worker"


def test_image_uri_resolves_project_family_pairs():
    assert _image_uri("cos-cloud/cos-stable") == (
        "projects/cos-cloud/global/images/family/cos-stable"
    )
    assert _image_uri("ubuntu-os-cloud/ubuntu-2204-lts") == (
        "projects/ubuntu-os-cloud/global/images/family/ubuntu-2204-lts"
    )
    assert _image_uri(DEFAULT_IMAGE).startswith("projects/cos-cloud/")


def test_create_vm_sends_instance_resource():
    instances = _InstancesStub()
    spec = MachineSpec(
        name="vm-0", machine_type="n1-standard-1", image="debian-12", labels={"team": "ml"}
    )

    op = _adapter(instances=instances).create_vm(spec)

    kind, kwargs = instances.calls[0]
    body = kwargs["instance_resource"]
    assert kind == "insert"
    assert kwargs["project"] == "my-project"
    assert kwargs["zone"] == "us-central1-a"
    assert body.name == "vm-0"
    assert body.machine_type == "zones/us-central1-a/machineTypes/n1-standard-1"
    assert body.disks[0].initialize_params.source_image == (
        "projects/debian-cloud/global/images/family/debian-12"
    )
    assert body.scheduling.preemptible is False
    assert dict(body.labels) == {"team": "ml"}

    assert op.id == "op-insert-vm-0"
    assert op.kind == OperationKind.INSERT
    assert op.status == OperationStatus.RUNNING
    assert op.started_at is not None
    assert op.ended_at is None


def test_create_vm_preemptible_with_custom_image():
    instances = _InstancesStub()
    spec = MachineSpec(
        name="vm-1",
        machine_type="e2-small",
        image="debian-12",
        custom_image="projects/my-project/global/images/worker-v3",
        preemptible=True,
    )

    _adapter(instances=instances).create_vm(spec)

    body = instances.calls[0][1]["instance_resource"]
    assert body.scheduling.preemptible is True
    assert body.scheduling.automatic_restart is False
    assert body.disks[0].initialize_params.source_image == (
        "projects/my-project/global/images/worker-v3"
    )


def test_delete_vm_returns_delete_operation():
    instances = _InstancesStub()

    op = _adapter(instances=instances).delete_vm("vm-0")

    assert instances.calls[0] == (
        "delete",
        {"project": "my-project", "zone": "us-central1-a", "instance": "vm-0"},
    )
    assert op.kind == OperationKind.DELETE
    assert op.target == "vm-0"
    assert op.status == OperationStatus.PENDING


def test_get_operation_maps_errors():
    raw = _raw_op(
        status="DONE",
        errors=[SimpleNamespace(code="QUOTA_EXCEEDED", message="Quota 'CPUS' exceeded")],
        end_time="2026-01-01T10:01:00Z",
    )
    operations = _OperationsStub(raw)
    pending = Operation(id="op-1", target="vm-0", kind=OperationKind.INSERT)

    op = _adapter(operations=operations).get_operation(pending)

    assert operations.calls == [
        {"project": "my-project", "zone": "us-central1-a", "operation": "op-1"}
    ]
    assert op.status == OperationStatus.ERROR
    assert op.error == "QUOTA_EXCEEDED: Quota 'CPUS' exceeded"
    assert op.target == "vm-0"
    assert op.ended_at is not None


def test_get_operation_done():
    operations = _OperationsStub(_raw_op(status="DONE", end_time="2026-01-01T10:01:00Z"))
    pending = Operation(id="op-1", target="vm-0", kind=OperationKind.DELETE)

    op = _adapter(operations=operations).get_operation(pending)

    assert op.status == OperationStatus.DONE
    assert op.error is None
    assert op.kind == OperationKind.DELETE


def test_list_vms_maps_instance_states():
    instances = _InstancesStub(
        [
            _instance("vm-0", "RUNNING", nat="34.1.2.3", internal="10.0.0.2", preemptible=True),
            _instance("vm-1", "RUNNING", internal="10.0.0.3"),
            _instance("vm-2", "STAGING", internal="10.0.0.4"),
            _instance("vm-3", "TERMINATED", internal="10.0.0.5", labels={"team": "ml"}),
            _instance("vm-4", "STOPPING"),
        ]
    )

    machines = {m.name: m for m in _adapter(instances=instances).list_vms()}

    assert machines["vm-0"].state == MachineState.READY
    assert machines["vm-0"].endpoint == "34.1.2.3"
    assert machines["vm-0"].preemptible is True
    assert machines["vm-1"].endpoint == "10.0.0.3"
    assert machines["vm-2"].state == MachineState.PROVISIONING
    assert machines["vm-2"].endpoint is None
    assert machines["vm-3"].state == MachineState.FAILED
    assert machines["vm-3"].error == "instance is TERMINATED"
    assert machines["vm-3"].labels == {"team": "ml"}
    assert machines["vm-4"].state == MachineState.STOPPING
