from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar, Union

from aibs_informatics_aws_utils.s3 import download_to_json_object, upload_json
from aibs_informatics_core.executors.base import BaseExecutor
from aibs_informatics_core.models.aws.s3 import S3URI
from aibs_informatics_core.models.base import ModelProtocol
from aibs_informatics_core.utils.json import JSON
from aws_lambda_powertools.logging import Logger
from aws_lambda_powertools.utilities.typing import LambdaContext

from populate_efs_lambda.common.base import HandlerMixins
from populate_efs_lambda.common.logging import LoggingMixins
from populate_efs_lambda.common.metrics import MetricsMixins

LambdaEvent = Union[JSON]  # type: ignore # https://github.com/python/mypy/issues/7866
LambdaHandlerType = Callable[[LambdaEvent, LambdaContext], Optional[JSON]]

REQUEST = TypeVar("REQUEST", bound=ModelProtocol)
RESPONSE = TypeVar("RESPONSE", bound=ModelProtocol)


@dataclass  # type: ignore[misc] # mypy #5374
class LambdaHandler(
    LoggingMixins,
    MetricsMixins,
    HandlerMixins,
    BaseExecutor[REQUEST, RESPONSE],
    Generic[REQUEST, RESPONSE],
):
    """Typed Lambda handler: an event is deserialized into REQUEST, passed to
    `handle`, and the RESPONSE it returns is serialized back to JSON.

    Subclasses implement `handle`. The module-level entrypoint referenced by
    the function's `Handler` setting is created with `get_handler()`:

        ```python
        class PopulateHandler(LambdaHandler[PopulateRequest, PopulateResponse]):
            def handle(self, request: PopulateRequest) -> PopulateResponse:
                ...

        handler = PopulateHandler.get_handler()
        ```
    """

    def __post_init__(self):
        self.context = LambdaContext()
        super().__post_init__()

    @classmethod
    def load_input__remote(cls, remote_path: S3URI) -> JSON:
        return download_to_json_object(remote_path)

    @classmethod
    def write_output__remote(cls, output: JSON, remote_path: S3URI) -> None:
        upload_json(output, s3_path=remote_path)

    @classmethod
    def from_invocation(
        cls, context: LambdaContext, logger: Logger, *args, **kwargs
    ) -> "LambdaHandler":
        """Create a handler instance bound to one invocation.

        The instance logs through `logger`, which carries the injected Lambda
        context, and module loggers are routed through the same handler.
        """
        lambda_handler = cls(*args, **kwargs)  # type: ignore[call-arg]
        lambda_handler.log = logger
        lambda_handler.context = context
        lambda_handler.route_to_handler_log()
        lambda_handler.log.debug(f"Created {lambda_handler}")
        return lambda_handler

    @classmethod
    def get_handler(cls, *args, **kwargs) -> LambdaHandlerType:
        """Create the Lambda entrypoint for this handler class.

        Args:
            *args: Positional arguments for the handler constructor.
            **kwargs: Keyword arguments for the handler constructor.
        """
        logger = cls.get_logger(service=cls.service_name())

        @logger.inject_lambda_context(log_event=True)
        def handler(event: LambdaEvent, context: LambdaContext) -> Optional[JSON]:
            return cls.from_invocation(context, logger, *args, **kwargs).invoke(event)

        return handler

    def invoke(self, event: LambdaEvent) -> Optional[JSON]:
        """Run one event through `handle`."""
        request = self.deserialize_request(event)
        self.log.debug(f"Deserialized event into {request}")

        response = self.handle(request)
        if not response:
            self.log.info("Handler returned no response")
            return None

        self.log.info(f"Handler returned {response}")
        return self.serialize_response(response)

    def __repr__(self) -> str:
        return (
            f"{self.handler_name()}"
            f"[{self.get_request_cls().__name__} -> {self.get_response_cls().__name__}]"
        )
