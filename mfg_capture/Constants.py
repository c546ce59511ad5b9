# Constants.py
# Description: Constants shared by the local store, the sync service and the UI
#
# Imports
#
# 3rd-Party Imports
#
# Local Imports
#
########################################################################################################################
#
# Functions:

# --- Collections ---
COLLECTION_TENSION = "tension"
COLLECTION_STOCKTAKE = "stocktake"
COLLECTION_FINISH_EARLIER = "finishearlier"
# Fixed sync order.
ALL_COLLECTIONS = (COLLECTION_TENSION, COLLECTION_STOCKTAKE, COLLECTION_FINISH_EARLIER)

# --- Record sync states ---
SYNC_STATUS_SYNCED = "synced"
SYNC_STATUS_PENDING = "pending"
SYNC_STATUS_CONFLICT = "conflict"
ALL_SYNC_STATUSES = (SYNC_STATUS_SYNCED, SYNC_STATUS_PENDING, SYNC_STATUS_CONFLICT)

# --- Sync runs ---
SYNC_TYPE_ALL = "all"
SYNC_TYPE_PUSH = "push"
SYNC_TYPE_PULL = "pull"

HISTORY_STATUS_SUCCESS = "success"
HISTORY_STATUS_PARTIAL = "partial"
HISTORY_STATUS_FAILED = "failed"
# Runs with fewer errors than this are "partial", not "failed".
PARTIAL_ERROR_THRESHOLD = 3

RESOLUTION_LOCAL = "local"
RESOLUTION_REMOTE = "remote"

PHASE_COMPLETE = "complete"
PHASE_UPLOAD_SUFFIX = "-upload"
PHASE_DOWNLOAD_SUFFIX = "-download"

# --- Messages surfaced to callers ---
MSG_NOT_CONFIGURED = "Server URL or auth token not configured"
MSG_SYNC_IN_PROGRESS = "Sync already in progress"
MSG_CONFLICT_NOT_FOUND = "Conflict not found"
MSG_INVALID_TOKEN = "Invalid authentication token"

# --- Defaults ---
DEFAULT_SYNC_INTERVAL_MINUTES = 30
DEFAULT_REMOTE_PAGE_SIZE = 50
DEFAULT_LOCAL_PAGE_SIZE = 10
DEFAULT_HISTORY_LIMIT = 20
DEFAULT_API_PREFIX = "/api/mobile"


# --- CSS definition ---
css_content = """
Screen { layout: vertical; }
Header { dock: top; height: 1; background: $accent-darken-1; }
Footer { dock: bottom; height: 1; background: $accent-darken-1; }
#status-bar { height: 3; padding: 0 1; border: round $accent; }
#sync-progress { height: 1; padding: 0 1; color: $text-muted; }
#actions { height: 3; padding: 0 1; }
#actions Button { width: 1fr; margin: 0 1 0 0; }
#tables { height: 1fr; }
#tables DataTable { height: 1fr; border: round $primary; }
#app-log-display { height: 10; border: round $panel-lighten-2; }
"""

#
# End of Constants.py
#######################################################################################################################
