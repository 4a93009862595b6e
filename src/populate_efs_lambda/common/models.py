"""Models for running handlers outside of the Lambda runtime.

Provides a Lambda context built from environment variables and the request
model naming a handler and the event to invoke it with.
"""

import inspect
from dataclasses import dataclass
from typing import Optional, cast

import marshmallow as mm
from aibs_informatics_aws_utils.constants.lambda_ import (
    AWS_LAMBDA_FUNCTION_ARN_KEY,
    AWS_LAMBDA_FUNCTION_MEMORY_SIZE_KEY,
    AWS_LAMBDA_FUNCTION_NAME_KEY,
    AWS_LAMBDA_FUNCTION_REQUEST_ID_KEY,
    AWS_LAMBDA_FUNCTION_VERSION_KEY,
    AWS_LAMBDA_LOG_GROUP_NAME_KEY,
    AWS_LAMBDA_LOG_STREAM_NAME_KEY,
    DEFAULT_AWS_LAMBDA_FUNCTION_NAME,
)
from aibs_informatics_aws_utils.core import get_account_id, get_region
from aibs_informatics_core.models.base import DictField, SchemaModel, custom_field
from aibs_informatics_core.utils.hashing import uuid_str
from aibs_informatics_core.utils.modules import as_module_type, get_qualified_name
from aibs_informatics_core.utils.os_operations import get_env_var
from aws_lambda_powertools.utilities.typing import LambdaContext
from aws_lambda_powertools.utilities.typing.lambda_client_context import LambdaClientContext
from aws_lambda_powertools.utilities.typing.lambda_cognito_identity import LambdaCognitoIdentity

from populate_efs_lambda.common.handler import LambdaEvent, LambdaHandler, LambdaHandlerType
from populate_efs_lambda.common.logging import get_service_logger

logger = get_service_logger(__name__)


class LocalLambdaContext(LambdaContext):
    """Lambda context for local runs, e.g. populating a volume mounted on an EC2 host.

    Fields come from the environment variables the Lambda runtime would set.
    """

    @classmethod
    def from_env(cls) -> "LocalLambdaContext":
        context = cls()
        context._function_name = (
            get_env_var(AWS_LAMBDA_FUNCTION_NAME_KEY) or DEFAULT_AWS_LAMBDA_FUNCTION_NAME
        )
        context._function_version = get_env_var(
            AWS_LAMBDA_FUNCTION_VERSION_KEY, default_value="$LATEST"
        )
        context._memory_limit_in_mb = int(
            get_env_var(AWS_LAMBDA_FUNCTION_MEMORY_SIZE_KEY, default_value="1024")
        )
        context._aws_request_id = get_env_var(
            AWS_LAMBDA_FUNCTION_REQUEST_ID_KEY, default_value=uuid_str()
        )
        context._invoked_function_arn = get_env_var(AWS_LAMBDA_FUNCTION_ARN_KEY) or (
            f"arn:aws:lambda:{get_region()}:{get_account_id()}:function:{context._function_name}"
        )
        context._log_group_name = get_env_var(
            AWS_LAMBDA_LOG_GROUP_NAME_KEY,
            default_value=f"/aws/lambda/{context._function_name}_local",
        )
        context._log_stream_name = get_env_var(
            AWS_LAMBDA_LOG_STREAM_NAME_KEY, default_value=context._aws_request_id
        )
        context._identity = LambdaCognitoIdentity()
        context._client_context = LambdaClientContext()
        return context


def serialize_handler(handler: LambdaHandlerType) -> str:
    return get_qualified_name(handler)


def deserialize_handler(handler: str) -> LambdaHandlerType:
    """Import the handler named by `handler`.

    A LambdaHandler subclass (e.g.
    'populate_efs_lambda.handlers.efs.operations.PopulateEFSHandler') is
    turned into its entrypoint with `get_handler()`. A function is used as is.

    Raises:
        ValueError: If the name does not point at a function or LambdaHandler subclass.
    """
    module_name, _, attr_name = handler.rpartition(".")
    if not module_name:
        raise ValueError(f"{handler} is not a qualified name")

    target = getattr(as_module_type(module_name), attr_name)
    if inspect.isclass(target) and issubclass(target, LambdaHandler):
        logger.debug(f"{handler} is a LambdaHandler class, creating its entrypoint")
        return target.get_handler()
    if inspect.isfunction(target):
        return cast(LambdaHandlerType, target)
    raise ValueError(f"{handler} is neither a function nor a LambdaHandler subclass")


class HandlerField(mm.fields.Field):
    """Serializes a handler as its qualified name."""

    def _serialize(self, value: Optional[LambdaHandlerType], attr, obj, **kwargs):
        return None if value is None else serialize_handler(value)

    def _deserialize(self, value, attr, data, **kwargs) -> LambdaHandlerType:
        if not isinstance(value, str):
            raise mm.ValidationError(f"Expected a qualified handler name, got {value!r}")
        return deserialize_handler(value)


@dataclass
class LambdaHandlerRequest(SchemaModel):
    handler: LambdaHandlerType = custom_field(mm_field=HandlerField())
    event: LambdaEvent = custom_field(mm_field=DictField())
