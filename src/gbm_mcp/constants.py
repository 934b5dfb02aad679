"""Project-wide constants for GBM."""

GIT_BINARY = "git"
GIT_DIR_NAME = ".git"
METADATA_FILE_NAME = "branches.json"
PRUNE_META_FILE_NAME = "branches.prune.json"
CONFIG_FILE_NAME = "gbm-config.yaml"

DEFAULT_TARGET_BRANCH = "main"
DEFAULT_REMOTE = "origin"
DEFAULT_GIT_TIMEOUT_SECONDS = 15.0
DEFAULT_CACHE_TTL_SECONDS = 5.0
DEFAULT_PRUNE_CHECK_INTERVAL_SECONDS = 3600
DEFAULT_RECENT_COMMITS = 3
DEFAULT_RECENT_BRANCHES = 10
RECENTLY_USED_DAYS = 7
OUTPUT_PREVIEW_CHARS = 200

FIELD_SEPARATOR = "|"
PATH_SEPARATOR = "/"

# name [upstream: ahead N, behind M]|hash|subject|author|date|head
BRANCH_LIST_FORMAT = (
    "%(refname:short)"
    "%(if)%(upstream)%(then) [%(upstream:short): %(upstream:track,nobracket)]%(end)"
    "|%(objectname)|%(subject)|%(authorname)|%(committerdate:iso8601)|%(HEAD)"
)
COMMIT_LOG_FORMAT = "%h|%s|%ar|%D"
REFLOG_FORMAT = "%gd|%gs"
