# run_worker.py
import logging

from contentflow import ContentFlow, QueueConfig


def log_payload(payload):
    logging.getLogger("run_worker").info(f"Handling payload: {payload}")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 1. Configure from CONTENTFLOW_* environment variables
    flow = ContentFlow(QueueConfig.from_env())

    # 2. Bind handlers
    flow.register_handler("update_analytics", log_payload)
    flow.register_handler("fetch_content", log_payload)

    # 3. Arm the recurring schedules and tick until interrupted
    flow.register_default_schedules()
    flow.worker().run()
