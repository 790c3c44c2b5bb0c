"""Shared constants for genflow."""

JOB_PENDING = "pending"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_CANCELLED = "cancelled"

TERMINAL_JOB_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED, JOB_CANCELLED})

TASK_PENDING = "pending"
TASK_PROCESSING = "processing"
TASK_COMPLETED = "completed"
TASK_FAILED = "failed"

# Progress stamped when a task enters ``processing``.
TASK_START_PROGRESS = 10

CANCELLED_TASK_MESSAGE = "cancelled"
CANCELLED_JOB_MESSAGE = "cancelled by user"

# Input keys checked, in order, to label a task with the model it used.
MODEL_NAME_KEYS = ("textModel", "imageModel", "videoModel", "audioModel", "modelName")

# Keys a provider's submit response may use to carry an async job identifier.
TASK_ID_KEYS = ("taskId", "task_id", "task_Id")

DEFAULT_LIST_LIMIT = 50
