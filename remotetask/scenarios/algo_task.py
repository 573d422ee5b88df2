"""Algorithm-task scenario: create a scheduling task, then delete it.

Request A POSTs an AddTask document carrying a fresh ``taskID``; request B,
half a second later, PUTs a DeleteTask document for the same ``taskID``.
Both go to an ISAPI-style device behind Digest authentication.

Usage from CLI::

    python -m remotetask.run --scenario algo-task --host 10.0.0.5 --max-requests 10

Usage as library::

    from remotetask.scenarios.algo_task import run_algo_task_scenario

    result = await run_algo_task_scenario(host="10.0.0.5", username="admin", password="...")
"""

from __future__ import annotations

from remotetask.core.models import (
    AuthCredential,
    FieldSpec,
    FieldTarget,
    GeneratorKind,
    RequestTemplate,
    RunConfig,
    RunResult,
)
from remotetask.core.scheduler import Scheduler

ADD_TASK_PATH = "/ISAPI/System/AlgoPackageScheduling/AddTask?format=json"
DELETE_TASK_PATH = "/ISAPI/System/AlgoPackageScheduling/DeleteTask?format=json"

ADD_TASK_BODY = """{
    "taskName": "{taskID}",
    "customInfo": "remotetask",
    "taskID": "{taskID}",
    "nodeID": "1",
    "algoPackageID": "{algoPackageID}",
    "algoID": "{algoID}",
    "DataSource": {
        "sourceType": "video",
        "pollingTime": 10,
        "StreamList": [{"cameraIndexCode": "{cameraIndexCode}", "RTSPURL": "{rtspURL}"}]
    }
}"""

DELETE_TASK_BODY = """{
    "TaskIDList": [{"taskID": "{taskID}"}]
}"""


def build_algo_task_config(
    *,
    host: str,
    username: str | None = None,
    password: str | None = None,
    scheme: str = "https",
    algo_package_id: str = "",
    algo_id: str = "smokeAndFireDetection",
    camera_index_code: str = "",
    rtsp_url: str = "",
    max_requests: int | None = 1,
    delay_between_a_and_b_ms: int = 500,
    delay_between_a_requests_ms: int = 3000,
) -> RunConfig:
    """Build a ``RunConfig`` for the add-then-delete task cycle.

    Static document values are configured as fixed fields so they flow
    through the same placeholder substitution as the per-cycle ``taskID``.
    """
    base = f"{scheme}://{host}"
    credential = None
    if username is not None:
        credential = AuthCredential(username=username, password=password or "")

    fields = (
        FieldSpec(name="taskID", generator=GeneratorKind.UUID.value, target=FieldTarget.BODY),
        FieldSpec(name="algoPackageID", generator=GeneratorKind.FIXED.value, target=FieldTarget.BODY, value=algo_package_id),
        FieldSpec(name="algoID", generator=GeneratorKind.FIXED.value, target=FieldTarget.BODY, value=algo_id),
        FieldSpec(name="cameraIndexCode", generator=GeneratorKind.FIXED.value, target=FieldTarget.BODY, value=camera_index_code),
        FieldSpec(name="rtspURL", generator=GeneratorKind.FIXED.value, target=FieldTarget.BODY, value=rtsp_url),
    )

    return RunConfig(
        request_a=RequestTemplate(
            method="POST",
            url=base + ADD_TASK_PATH,
            headers={"Content-Type": "application/json"},
            body=ADD_TASK_BODY,
        ),
        request_b=RequestTemplate(
            method="PUT",
            url=base + DELETE_TASK_PATH,
            body=DELETE_TASK_BODY,
        ),
        delay_between_a_and_b_ms=delay_between_a_and_b_ms,
        delay_between_a_requests_ms=delay_between_a_requests_ms,
        max_requests=max_requests,
        digest_auth=credential,
        generated_fields=fields,
    )


async def run_algo_task_scenario(
    *,
    host: str,
    username: str | None = None,
    password: str | None = None,
    scheme: str = "https",
    max_requests: int | None = 1,
) -> RunResult:
    """Run the scenario and return the result."""
    config = build_algo_task_config(
        host=host,
        username=username,
        password=password,
        scheme=scheme,
        max_requests=max_requests,
    )
    return await Scheduler(config).run()
