from gceops.core.cluster import DEFAULT_LAUNCH_COMMAND
from gceops.core.settings import Settings


def test_defaults_from_empty_environment():
    s = Settings.from_env({})

    assert s == Settings()
    assert s.project is None
    assert s.max_parallel == 16
    assert s.launch_command == DEFAULT_LAUNCH_COMMAND


def test_reads_prefixed_variables():
    s = Settings.from_env(
        {
            "GCEOPS_PROJECT": "my-project",
            "GCEOPS_ZONE": " europe-west1-b ",
            "GCEOPS_POLL_INTERVAL": "2.5",
            "GCEOPS_OPERATION_TIMEOUT": "120",
            "GCEOPS_MAX_PARALLEL": "4",
            "GCEOPS_SSH_USER": "worker",
            "GCEOPS_LAUNCH_COMMAND": "python3 -m gceops.remote",
            "GCEOPS_MAX_OUTSTANDING": "8",
            "GCEOPS_TASK_POLL_INTERVAL": "0.1",
        }
    )

    assert s.project == "my-project"
    assert s.zone == "europe-west1-b"
    assert s.poll_interval == 2.5
    assert s.operation_timeout == 120.0
    assert s.max_parallel == 4
    assert s.ssh_user == "worker"
    assert s.ssh_key_file is None
    assert s.launch_command == "python3 -m gceops.remote"
    assert s.max_outstanding_per_member == 8
    assert s.task_poll_interval == 0.1


def test_malformed_values_fall_back_to_defaults():
    s = Settings.from_env(
        {
            "GCEOPS_POLL_INTERVAL": "soon",
            "GCEOPS_OPERATION_TIMEOUT": "-5",
            "GCEOPS_MAX_PARALLEL": "many",
            "GCEOPS_MAX_OUTSTANDING": "0",
            "GCEOPS_PROJECT": "   ",
        }
    )

    assert s.poll_interval == 5.0
    assert s.operation_timeout == 600.0
    assert s.max_parallel == 16
    assert s.max_outstanding_per_member == 1
    assert s.project is None
