import os
import sys
import time

sys.path.append(os.getcwd())

from resqueue.context import QueueContext
from resqueue.services.status import JobStatusTracker
from resqueue.settings import settings

def main():
    if len(sys.argv) < 2:
        print("Specify the ID of a job to monitor the status of.")
        sys.exit(1)

    job_id = sys.argv[1]
    ctx = QueueContext.from_settings(settings)
    tracker = JobStatusTracker(ctx.store, job_id, settings.STATUS_TTL_SECONDS)
    if not tracker.is_tracking():
        print("Not tracking the status of this job.")
        sys.exit(1)

    print(f"Tracking status of {job_id}. Press Ctrl-C to stop.\n")
    try:
        while True:
            print(f"Status of {job_id} is: {tracker.get()}")
            time.sleep(1)
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    main()
