"""Shared constants for gateflow."""

import re

# Plan ID validation
PLAN_ID_PATTERN = re.compile(r'^[a-z0-9][a-z0-9_-]*$')
MAX_PLAN_ID_LEN = 48

# Size ceilings for a single work unit
MAX_UNIT_FILES = 5
MAX_UNIT_LOC = 500
MAX_UNIT_HOURS = 2

# Strategy thresholds (count of non-terminal units)
SHARED_BRANCH_MIN_UNITS = 2
ISOLATED_WORKTREES_MIN_UNITS = 5

# Overlap override: at most this many hot files shared by every unit
MAX_SHARED_HOT_FILES = 2

# Worker restrictions sent with each dispatch
RESTRICTION_EXCLUSIVE = "exclusive-scope"
RESTRICTION_SHARED = "shared-workspace"

# Archive directory name under plans/
ARCHIVE_DIR_NAME = "_archived"

PLAN_FILE_VERSION = 1

# CLI exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_UNITS_FAILED = 3
EXIT_STORE_INTEGRITY = 4
EXIT_LOCK_TIMEOUT = 5
