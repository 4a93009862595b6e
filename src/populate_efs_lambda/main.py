"""Run a Lambda handler outside of the Lambda runtime.

Useful to populate a volume from a host that already has it mounted:

    handle-lambda \\
        --handler populate_efs_lambda.handlers.efs.operations.PopulateEFSHandler \\
        --payload '{"file_system_id": "fs-1234", "access_point_id": "fsap-1234", ...}' \\
        --response-location /tmp/response.json

Every argument falls back to an environment variable so the same entrypoint
can be used as a container command.
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional, Sequence

from aibs_informatics_aws_utils.s3 import download_to_json_object, upload_json
from aibs_informatics_core.models.aws.s3 import S3URI
from aibs_informatics_core.utils.json import JSON
from aibs_informatics_core.utils.os_operations import get_env_var
from aws_lambda_powertools.utilities.typing import LambdaContext

from populate_efs_lambda.common.handler import LambdaEvent
from populate_efs_lambda.common.logging import get_service_logger
from populate_efs_lambda.common.models import LambdaHandlerRequest, LocalLambdaContext

logger = get_service_logger(__name__)

AWS_LAMBDA_FUNCTION_HANDLER_KEY = "AWS_LAMBDA_FUNCTION_HANDLER"
AWS_LAMBDA_EVENT_PAYLOAD_KEY = "AWS_LAMBDA_EVENT_PAYLOAD"
AWS_LAMBDA_EVENT_RESPONSE_LOCATION_KEY = "AWS_LAMBDA_EVENT_RESPONSE_LOCATION"


def handle(event: LambdaEvent, context: LambdaContext) -> Optional[JSON]:
    """Invoke the handler named in a serialized `LambdaHandlerRequest`."""
    request = LambdaHandlerRequest.from_dict(event)
    logger.info(f"Invoking {request.handler} with event: {request.event}")
    return request.handler(request.event, context)


def load_payload(payload: str) -> JSON:
    """Read an event given inline as JSON, as a local file, or as an S3 object."""
    if payload.startswith("s3://"):
        return download_to_json_object(S3URI(payload))
    if not payload.lstrip().startswith(("{", "[")) and Path(payload).is_file():
        return json.loads(Path(payload).read_text())
    return json.loads(payload)


def write_response(response: Optional[JSON], response_location: str) -> None:
    content = response if response is not None else {}
    if response_location.startswith("s3://"):
        logger.info(f"Uploading response to {response_location}")
        upload_json(content, s3_path=S3URI(response_location))
        return

    path = Path(response_location)
    if path.is_dir():
        raise ValueError(f"Response location {path} is a directory, expected a file path")
    logger.info(f"Writing response to {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(content))


def handle_cli(args: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Invoke a Lambda handler locally.")
    parser.add_argument(
        "--handler",
        default=get_env_var(AWS_LAMBDA_FUNCTION_HANDLER_KEY),
        help=(
            "Qualified name of a handler function or LambdaHandler class. "
            f"Defaults to ${AWS_LAMBDA_FUNCTION_HANDLER_KEY}"
        ),
    )
    parser.add_argument(
        "--payload",
        default=get_env_var(AWS_LAMBDA_EVENT_PAYLOAD_KEY),
        help=(
            "Event as a JSON string, a local JSON file or an S3 URI. "
            f"Defaults to ${AWS_LAMBDA_EVENT_PAYLOAD_KEY}"
        ),
    )
    parser.add_argument(
        "--response-location",
        default=get_env_var(AWS_LAMBDA_EVENT_RESPONSE_LOCATION_KEY),
        help=(
            "Optional local path or S3 URI to write the response to. "
            f"Defaults to ${AWS_LAMBDA_EVENT_RESPONSE_LOCATION_KEY}"
        ),
    )
    parsed_args = parser.parse_args(args)

    if not parsed_args.handler:
        raise ValueError(
            f"No handler specified with --handler or ${AWS_LAMBDA_FUNCTION_HANDLER_KEY}"
        )
    if parsed_args.payload is None:
        raise ValueError(
            f"No payload specified with --payload or ${AWS_LAMBDA_EVENT_PAYLOAD_KEY}"
        )

    request = {"handler": parsed_args.handler, "event": load_payload(parsed_args.payload)}
    response = handle(request, LocalLambdaContext.from_env())

    if parsed_args.response_location:
        write_response(response, parsed_args.response_location)


def main():
    handle_cli(sys.argv[1:])


if __name__ == "__main__":
    main()
