# app/lib/cloud_tasks.py
from __future__ import annotations

import datetime
import json
from typing import Optional

from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from app.config import Config, config as default_config


def create_task(
    *,
    url: str,
    payload: dict,
    schedule_in_seconds: float = 0,
    queue: Optional[str] = None,
    cfg: Config = default_config,
):
    """
    Create an HTTP task targeting a FastAPI worker endpoint.
    Assumes OIDC auth is not used; protect via network/IAP/firewall as needed.
    """
    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(cfg.gcp_project, cfg.gcp_location, queue or cfg.tasks_queue)

    body = json.dumps(payload).encode("utf-8")
    task = {
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": url,
            "headers": {"Content-Type": "application/json"},
            "body": body,
        },
        "dispatch_deadline": {"seconds": 1800},
    }

    if schedule_in_seconds > 0:
        d = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=schedule_in_seconds)
        ts = timestamp_pb2.Timestamp()
        ts.FromDatetime(d)
        task["schedule_time"] = ts

    return client.create_task(parent=parent, task=task)
