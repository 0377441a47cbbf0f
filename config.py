"""
Central configuration for bookrelay.

Flat module-level constants read by the job orchestration core and the API
layer.  A subset is runtime-adjustable through ``api.config.RuntimeConfig``
(see ``_ADJUSTABLE_KEYS`` there), which patches the attributes of this
module in place, so callers should read ``config.X`` at use time rather than
binding the value at import.

Config Status Legend
====================
Each constant is annotated with one of the following statuses:

  ACTIVE      — Imported and used by running code.  Changing the value
                affects live behaviour.
  PLACEHOLDER — Defined for future use.  Safe to change without affecting
                current behaviour.

Search for ``# STATUS:`` to locate all annotations.
"""
import os


# ── Discovery queue ───────────────────────────────────────────────────
DISCOVERY_POLL_SECONDS = 2.0                      # STATUS: ACTIVE — api/jobs/scheduler.py; poll interval of the single-flight loop
DISCOVERY_DEFAULT_PAGES = 3                       # STATUS: ACTIVE — api/jobs/models.py; page_limit default for discovery payloads

# ── Dispatch kinds ────────────────────────────────────────────────────
FETCH_MAX_CONCURRENCY = 6                         # STATUS: ACTIVE — api/jobs/fetch_job.py; parallel chapter downloads per fetch job
CHUNK_SIZE_LINES = int(os.environ.get("BOOKRELAY_CHUNK_SIZE", "1000"))  # STATUS: ACTIVE — default rechunk/manual-ingest chunk size

# ── Operation registry ────────────────────────────────────────────────
OPERATION_GRACE_SECONDS = 300                     # STATUS: ACTIVE — api/jobs/registry.py; terminal operations stay visible for 5 minutes

# ── Progress streaming ────────────────────────────────────────────────
STREAM_HEARTBEAT_SECONDS = 30.0                   # STATUS: ACTIVE — api/jobs/progress.py; comment-line keepalive
STREAM_PROGRESS_SECONDS = 1.0                     # STATUS: ACTIVE — api/jobs/progress.py; periodic progress snapshot cadence
STATUS_STREAM_SECONDS = 2.0                       # STATUS: ACTIVE — api/routers/operations.py; bot-status snapshot cadence

# ── Retention ─────────────────────────────────────────────────────────
JOB_RETENTION_DAYS = 14                           # STATUS: ACTIVE — api/jobs/cleanup.py; ledger rows older than this are deleted
CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60           # STATUS: ACTIVE — api/jobs/cleanup.py; daily sweep

# ── Auto-discovery policy ─────────────────────────────────────────────
AUTO_DISCOVERY_ENABLED = os.environ.get("BOOKRELAY_AUTO_DISCOVERY", "true").lower() in ("true", "1", "yes")  # STATUS: ACTIVE — api/services/auto_discovery.py
AUTO_DISCOVERY_CHECK_SECONDS = 60.0               # STATUS: ACTIVE — api/services/auto_discovery.py; policy evaluation cadence
AUTO_DISCOVERY_IDLE_MINUTES = 10                  # STATUS: ACTIVE — minimum registry idle time before enqueueing
AUTO_DISCOVERY_INTERVAL_HOURS = 24                # STATUS: ACTIVE — minimum gap between searches of the same subject
AUTO_DISCOVERY_PAGES = 3                          # STATUS: ACTIVE — page_limit for auto-created discovery jobs
AUTO_DISCOVERY_MAX_JOBS = 0                       # STATUS: ACTIVE — cap on jobs created per check; 0 means unlimited

# ── Logging ───────────────────────────────────────────────────────────
LOG_LEVEL = "INFO"                                # STATUS: ACTIVE — api/main.py; "DEBUG", "INFO", "WARNING", "ERROR"
LOG_FORMAT = "structured"                         # STATUS: ACTIVE — api/main.py; "structured" or "json"


def validate_config() -> list:
    """Check config for common misconfigurations.

    Returns a list of dicts: [{"level": "WARNING"|"ERROR", "message": str}].
    Called on server startup and available via /api/config/validate.
    """
    issues = []

    if JOB_RETENTION_DAYS < 1:
        issues.append({
            "level": "ERROR",
            "message": f"JOB_RETENTION_DAYS={JOB_RETENTION_DAYS} would delete jobs as soon as they are created.",
        })

    if CHUNK_SIZE_LINES < 1:
        issues.append({
            "level": "ERROR",
            "message": f"CHUNK_SIZE_LINES={CHUNK_SIZE_LINES} must be a positive line count.",
        })

    if FETCH_MAX_CONCURRENCY < 1:
        issues.append({
            "level": "ERROR",
            "message": f"FETCH_MAX_CONCURRENCY={FETCH_MAX_CONCURRENCY} must be at least 1.",
        })

    if DISCOVERY_POLL_SECONDS <= 0:
        issues.append({
            "level": "ERROR",
            "message": f"DISCOVERY_POLL_SECONDS={DISCOVERY_POLL_SECONDS} must be positive.",
        })

    if AUTO_DISCOVERY_ENABLED and AUTO_DISCOVERY_IDLE_MINUTES * 60 <= OPERATION_GRACE_SECONDS:
        issues.append({
            "level": "WARNING",
            "message": (
                "AUTO_DISCOVERY_IDLE_MINUTES is shorter than the operation grace window; "
                "auto-discovery may enqueue work while finished operations are still visible."
            ),
        })

    if LOG_FORMAT not in ("structured", "json"):
        issues.append({
            "level": "WARNING",
            "message": f"LOG_FORMAT={LOG_FORMAT!r} is not recognised; falling back to 'structured'.",
        })

    return issues
