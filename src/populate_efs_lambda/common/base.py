from aws_lambda_powertools.utilities.typing import LambdaContext

CONTEXT_ATTR = "_context"


class HandlerMixins:
    """Identity and invocation context shared by the logging and metrics mixins."""

    @property
    def context(self) -> LambdaContext:
        """Context of the current invocation.

        Raises:
            ValueError: If the handler has not been bound to an invocation.
        """
        context = getattr(self, CONTEXT_ATTR, None)
        if context is None:
            raise ValueError(f"{self.__class__.__name__} is not bound to an invocation")
        return context

    @context.setter
    def context(self, value: LambdaContext):
        setattr(self, CONTEXT_ATTR, value)

    @property
    def log_stream_name(self) -> str:
        """CloudWatch log stream of the current invocation, empty when running without one."""
        try:
            return self.context.log_stream_name or ""
        except (AttributeError, ValueError):
            return ""

    @classmethod
    def handler_name(cls) -> str:
        return cls.__name__

    # Used as the Powertools service of the handler's logger and metrics
    service_name = handler_name
