"""Local development entry point.

Usage:
    python run.py

Starts the API and, when SCHEDULER_ENABLED is set, the recurring issue
scheduler in a background thread of the same process. Run only one
scheduler per database (see `flask run-scheduler` for a dedicated worker).
"""

import os

from dotenv import load_dotenv

load_dotenv()  # Load .env before anything else

from tracker import create_app  # noqa: E402
from tracker.services.scheduler_service import RecurrenceScheduler  # noqa: E402

app = create_app()

if __name__ == "__main__":
    scheduler = None
    # The reloader imports this module twice; only start in the child.
    if app.config["SCHEDULER_ENABLED"] and os.environ.get("WERKZEUG_RUN_MAIN") == "true":
        scheduler = RecurrenceScheduler(app)
        scheduler.start()
    try:
        app.run(debug=True, host="0.0.0.0", port=5001)
    finally:
        if scheduler is not None:
            scheduler.stop(timeout=5)
