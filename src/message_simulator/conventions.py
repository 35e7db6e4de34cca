"""Message Simulator Conventions - IMMUTABLE

Canonical names the store, the navigation layer and the persisted
payloads agree on. These values are NOT configurable: changing a
storage key orphans every user's saved threads, changing the schema
version without a migration loses them.

Things that CAN be configured (via simulator.yaml):
- storage backend and byte budget
- save debounce delay
- server host / port

Things that CANNOT be configured (defined HERE):
- storage keys
- schema version
- navigation parameter name
"""

# --- The Root ---
SIMULATOR_HOME = "~/.message-simulator"
HOME_ENV_VAR = "MSGSIM_HOME"

# --- Configuration ---
CONFIG_FILENAME = "simulator.yaml"

# --- Storage keys ---
# The thread collection payload: {"version": N, "threads": [...]}
THREADS_STORAGE_KEY = "message-simulator:threads"
# Pre-thread-model payload location (single conversation)
LEGACY_MESSAGES_KEY = "message-simulator:messages"
# Last-active pointer: a bare thread id, no versioning
LAST_THREAD_KEY = "message-simulator:last-thread"

# --- Schema ---
# 0: bare message array
# 1: {version, messages}
# 2: {version, messages, recipient}
# 3: {version, threads}
CURRENT_SCHEMA_VERSION = 3
SINGLE_THREAD_VERSIONS = (1, 2)

# --- Navigation ---
THREAD_QUERY_PARAM = "thread"
DEFAULT_ADDRESS = "http://localhost/"

# --- Persistence ---
DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024  # browser origin budget
FRAME_DELAY_MS = 16  # one frame at 60 Hz
STORAGE_DIR = "storage"  # relative to SIMULATOR_HOME

# --- Logs ---
LOG_DIR = "logs"  # relative to SIMULATOR_HOME
LOG_FILE = "simulator.log"

# --- Server ---
SERVER_DEFAULT_HOST = "127.0.0.1"
SERVER_DEFAULT_PORT = 8420

# --- Display ---
COPY_SUFFIX = " (Copy)"
UNTITLED_THREAD_NAME = "New Conversation"
