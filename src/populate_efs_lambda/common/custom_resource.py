"""CloudFormation custom resource handlers.

A custom resource handler receives the lifecycle event CloudFormation sends
to the function's service token, routes it to `on_create`, `on_update` or
`on_delete`, and reports the outcome to the pre-signed `ResponseURL`.

See Also:
    https://docs.aws.amazon.com/AWSCloudFormation/latest/UserGuide/crpg-ref-responses.html
"""

import json
import re
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, Optional

import requests
from aibs_informatics_core.exceptions import ApplicationException
from aibs_informatics_core.utils.json import JSON
from aws_lambda_powertools.utilities.data_classes import CloudFormationCustomResourceEvent

from populate_efs_lambda.common.handler import REQUEST, RESPONSE, LambdaEvent, LambdaHandler

SERVICE_TOKEN_KEY = "ServiceToken"

# CloudFormation rejects response bodies larger than 4096 bytes
MAX_REASON_LENGTH = 1024
RESPONSE_TIMEOUT_SECONDS = 30

_PASCAL_CASE_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


class UnsupportedRequestTypeError(ApplicationException):
    """Raised for a lifecycle verb other than Create, Update or Delete."""


class CustomResourceResponseError(ApplicationException):
    """Raised when the outcome could not be delivered to CloudFormation."""


class CustomResourceRequestType(Enum):
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"

    @classmethod
    def parse(cls, value: Any) -> "CustomResourceRequestType":
        try:
            return cls(value)
        except ValueError:
            raise UnsupportedRequestTypeError(f"Unknown RequestType: {value}")


class CustomResourceStatus(Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


def to_snake_case(key: str) -> str:
    """Convert a CloudFormation property name (`EfsRootDirectory`) to `efs_root_directory`."""
    return _PASCAL_CASE_BOUNDARY.sub("_", key).lower()


def to_pascal_case(key: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in key.split("_"))


@dataclass
class CustomResourceResponse:
    """Body PUT to the pre-signed response URL of a custom resource event."""

    status: CustomResourceStatus
    physical_resource_id: str
    stack_id: str
    request_id: str
    logical_resource_id: str
    reason: Optional[str] = None
    no_echo: bool = False
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "Status": self.status.value,
            "PhysicalResourceId": self.physical_resource_id,
            "StackId": self.stack_id,
            "RequestId": self.request_id,
            "LogicalResourceId": self.logical_resource_id,
            "NoEcho": self.no_echo,
            "Data": self.data,
        }
        if self.reason:
            body["Reason"] = self.reason[:MAX_REASON_LENGTH]
        return body

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


def put_response(response_url: str, body: str) -> None:
    """PUT a response body to the pre-signed S3 URL provided by CloudFormation.

    The URL is signed without a content type, so the header must be empty.

    Raises:
        CustomResourceResponseError: If the request fails or is rejected.
    """
    try:
        response = requests.put(
            response_url,
            data=body.encode("utf-8"),
            headers={"Content-Type": ""},
            timeout=RESPONSE_TIMEOUT_SECONDS,
        )
        response.raise_for_status()
    except requests.RequestException as e:
        raise CustomResourceResponseError(f"Could not deliver response to CloudFormation: {e}")


@dataclass  # type: ignore[misc] # mypy #5374
class CustomResourceHandler(LambdaHandler[REQUEST, RESPONSE], Generic[REQUEST, RESPONSE]):
    """Base class for Lambda-backed CloudFormation custom resources.

    The `ResourceProperties` of the event are deserialized into REQUEST
    (PascalCase keys are mapped onto the snake_case fields of the model).
    `Create` and `Update` both call `handle`; `Delete` does nothing unless
    `on_delete` is overridden. The serialized RESPONSE is returned to
    CloudFormation as the `Data` of the resource, readable with `Fn::GetAtt`.

    Exactly one response is sent per invocation. On failure the FAILED
    response is sent first and the error is then re-raised, so the
    invocation is recorded as failed without leaving the stack waiting.

    Example:
        ```python
        class MyResource(CustomResourceHandler[MyProperties, MyAttributes]):
            def handle(self, request: MyProperties) -> MyAttributes:
                ...

        handler = MyResource.get_handler()
        ```
    """

    def invoke(self, event: LambdaEvent) -> JSON:
        return self.handle_event(CloudFormationCustomResourceEvent(event))

    def handle_event(self, event: CloudFormationCustomResourceEvent) -> JSON:
        """Process one lifecycle event and report its outcome to CloudFormation.

        Args:
            event (CloudFormationCustomResourceEvent): The custom resource event.

        Returns:
            The response body sent to CloudFormation.
        """
        start = datetime.now()
        request_type = event.get("RequestType")
        metric_prefix = (
            request_type
            if request_type in {t.value for t in CustomResourceRequestType}
            else "Unknown"
        )
        self.log.info(
            f"Received {request_type} request for {event.get('LogicalResourceId')} "
            f"(stack {event.get('StackId')})"
        )
        try:
            try:
                response = self.dispatch(event)
                data = self.serialize_resource_attributes(response) if response else {}
                self.metrics.add_outcome_metrics(metric_prefix, succeeded=True)
            except Exception as e:
                self.log.exception(f"{request_type} request failed: {e}")
                self.metrics.add_outcome_metrics(metric_prefix, succeeded=False)
                self.send_response(
                    event,
                    CustomResourceStatus.FAILED,
                    reason=(
                        f"{type(e).__name__}: {e}. "
                        f"See CloudWatch log stream: {self.log_stream_name}"
                    ),
                )
                raise
            return self.send_response(event, CustomResourceStatus.SUCCESS, data=data)
        finally:
            self.metrics.add_duration_metric(metric_prefix, start=start)
            self.metrics.flush_metrics()

    def dispatch(self, event: CloudFormationCustomResourceEvent) -> Optional[RESPONSE]:
        """Route the event to the lifecycle method matching its RequestType.

        Raises:
            UnsupportedRequestTypeError: If the RequestType is not Create, Update or Delete.
        """
        request_type = CustomResourceRequestType.parse(event.get("RequestType"))
        properties: Dict[str, Any] = event.get("ResourceProperties") or {}

        if request_type == CustomResourceRequestType.DELETE:
            self.on_delete(properties)
            return None

        request = self.deserialize_resource_properties(properties)
        if request_type == CustomResourceRequestType.CREATE:
            return self.on_create(request)
        self.log.info(f"Previous resource properties: {event.get('OldResourceProperties')}")
        return self.on_update(request)

    def on_create(self, request: REQUEST) -> Optional[RESPONSE]:
        return self.handle(request)

    def on_update(self, request: REQUEST) -> Optional[RESPONSE]:
        """Apply updated properties. By default identical to a create."""
        return self.handle(request)

    def on_delete(self, properties: Dict[str, Any]) -> None:
        """Tear down the resource. By default nothing is removed.

        Receives the raw properties so that a resource whose creation failed
        on invalid properties can still be deleted.
        """
        self.log.info("Delete requested, nothing to clean up.")

    def deserialize_resource_properties(self, properties: Dict[str, Any]) -> REQUEST:
        """Deserialize `ResourceProperties` into the REQUEST model of this handler.

        `ServiceToken` and properties without a matching field are ignored.
        """
        request_fields = {f.name for f in fields(self.get_request_cls())}
        request_data: Dict[str, Any] = {}
        for key, value in properties.items():
            if key == SERVICE_TOKEN_KEY:
                continue
            field_name = to_snake_case(key)
            if field_name in request_fields:
                request_data[field_name] = value
        return self.deserialize_request(request_data)

    def serialize_resource_attributes(self, response: RESPONSE) -> Dict[str, Any]:
        serialized = self.serialize_response(response)
        if not isinstance(serialized, dict):
            return {}
        return {to_pascal_case(key): value for key, value in serialized.items()}

    def get_physical_resource_id(self, event: CloudFormationCustomResourceEvent) -> str:
        """Keep the id CloudFormation already knows, otherwise use the log stream name.

        A stable id prevents CloudFormation from treating an update as a replacement.
        """
        return (
            event.get("PhysicalResourceId")
            or self.log_stream_name
            or str(event.get("LogicalResourceId"))
        )

    def send_response(
        self,
        event: CloudFormationCustomResourceEvent,
        status: CustomResourceStatus,
        data: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
    ) -> JSON:
        response = CustomResourceResponse(
            status=status,
            physical_resource_id=self.get_physical_resource_id(event),
            stack_id=event.get("StackId", ""),
            request_id=event.get("RequestId", ""),
            logical_resource_id=event.get("LogicalResourceId", ""),
            reason=reason,
            data=data or {},
        )
        body = response.to_json()
        self.log.info(f"Sending {status.value} response to CloudFormation: {body}")
        response_url = event.get("ResponseURL")
        if not response_url:
            raise CustomResourceResponseError("Event carries no ResponseURL, cannot respond")
        put_response(response_url, body)
        return response.to_dict()
