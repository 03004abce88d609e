from prometheus_client import Counter, Histogram

DEVICE_COMMANDS = Counter(
    "device_commands_total",
    "Device command primitives executed",
    ["command", "outcome"],
)
DEVICE_COMMAND_LATENCY = Histogram(
    "device_command_duration_seconds",
    "Device command primitive latency",
    ["command"],
)
DEVICE_STATUS_CHANGES = Counter(
    "device_status_changes_total",
    "Device reachability transitions",
    ["new_status"],
)
USAGE_THRESHOLD_ACTIONS = Counter(
    "usage_threshold_actions_total",
    "Data cap threshold actions fired",
    ["action"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)


def observe_command(command: str, outcome: str, duration: float) -> None:
    DEVICE_COMMANDS.labels(command=command, outcome=outcome).inc()
    DEVICE_COMMAND_LATENCY.labels(command=command).observe(duration)
