"""Names shared across the engine: task kinds, queues, roles, stages, statuses."""

# Task kinds
KIND_AGENT_EXECUTE = "agent:execute"
KIND_AGENT_CHAT = "agent:chat"
KIND_PROJECT_SETUP = "project:setup"
KIND_PROJECT_DEPLOY = "project:deploy"
KIND_PROJECT_DOWNLOAD = "project:download"
KIND_PROJECT_BACKUP = "project:backup"
KIND_WEBSOCKET_BROADCAST = "websocket:broadcast"

TASK_KINDS = (
    KIND_AGENT_EXECUTE,
    KIND_AGENT_CHAT,
    KIND_PROJECT_SETUP,
    KIND_PROJECT_DEPLOY,
    KIND_PROJECT_DOWNLOAD,
    KIND_PROJECT_BACKUP,
    KIND_WEBSOCKET_BROADCAST,
)

# Priority queues and their default weights
QUEUE_CRITICAL = "critical"
QUEUE_DEFAULT = "default"
QUEUE_LOW = "low"
QUEUE_WEIGHTS = {QUEUE_CRITICAL: 6, QUEUE_DEFAULT: 3, QUEUE_LOW: 1}

# Queue-side task states
STATE_QUEUED = "queued"
STATE_RUNNING = "running"
STATE_RETRY = "retry"
STATE_DONE = "done"
STATE_FAILED = "failed"

# Published / polled task statuses
STATUS_QUEUED = "queued"
STATUS_IN_PROGRESS = "in_progress"
STATUS_RETRYING = "retrying"
STATUS_DONE = "done"
STATUS_FAILED = "failed"
TERMINAL_STATUSES = (STATUS_DONE, STATUS_FAILED)

# Agent roles
ROLE_ANALYST = "analyst"
ROLE_PM = "pm"
ROLE_UX_EXPERT = "ux-expert"
ROLE_ARCHITECT = "architect"
ROLE_PO = "po"
ROLE_DEV = "dev"

AGENT_ROLES = (ROLE_ANALYST, ROLE_PM, ROLE_UX_EXPERT, ROLE_ARCHITECT, ROLE_PO, ROLE_DEV)

# Dev stages
STAGE_SETUP_ENVIRONMENT = "setup_environment"
STAGE_CHECK_REQUIREMENT = "check_requirement"
STAGE_GENERATE_PRD = "generate_prd"
STAGE_DEFINE_UX_STANDARD = "define_ux_standard"
STAGE_DESIGN_ARCHITECTURE = "design_architecture"
STAGE_PLAN_EPIC_AND_STORY = "plan_epic_and_story"
STAGE_DEFINE_DATA_MODEL = "define_data_model"
STAGE_DEFINE_API = "define_api"
STAGE_DEVELOP_STORY = "develop_story"
STAGE_FIX_BUG = "fix_bug"
STAGE_RUN_TEST = "run_test"
STAGE_DEPLOY = "deploy"

DEFAULT_ROLE_STAGES = {
    ROLE_ANALYST: STAGE_CHECK_REQUIREMENT,
    ROLE_PM: STAGE_GENERATE_PRD,
    ROLE_UX_EXPERT: STAGE_DEFINE_UX_STANDARD,
    ROLE_ARCHITECT: STAGE_DESIGN_ARCHITECTURE,
    ROLE_PO: STAGE_PLAN_EPIC_AND_STORY,
    ROLE_DEV: STAGE_DEVELOP_STORY,
}

# Toolchain installed when a setup payload names none
DEFAULT_TOOLCHAIN_KIND = "claude-code"

# Broker channels
STATUS_CHANNEL = "agent_task_status"
BROADCAST_CHANNEL = "websocket_broadcast"

# Session-id cache
SESSION_KEY_FORMAT = "project:{project_guid}:sessions:{role}"
SESSION_TTL_SECONDS = 24 * 60 * 60

# HTTP envelope codes
SUCCESS_CODE = 0
ERROR_CODE = 1
BAD_REQUEST_CODE = 400


def default_stage(role: str) -> str:
    return DEFAULT_ROLE_STAGES.get(role, STAGE_DEVELOP_STORY)
