import logging
from typing import Optional

from dipipe.exceptions import PipelineError
from dipipe.pipeline._context import PipelineContext
from dipipe.pipeline._stages import Stage

logger = logging.getLogger(__name__)


class LoggingObserver:
    """Default observer: stage transitions at DEBUG, unhandled errors at ERROR"""

    __slots__ = ("logger",)

    def __init__(self, logger: logging.Logger = logger) -> None:
        self.logger = logger

    def stage_entered(self, context: PipelineContext, stage: Stage) -> None:
        self.logger.debug("%s: entering %s", context.handler.display_name, stage.value)

    def stage_exited(
        self,
        context: PipelineContext,
        stage: Stage,
        error: Optional[BaseException] = None,
    ) -> None:
        if error is None:
            self.logger.debug("%s: leaving %s", context.handler.display_name, stage.value)
        else:
            self.logger.debug(
                "%s: leaving %s with %s",
                context.handler.display_name,
                stage.value,
                type(error).__name__,
            )

    def unhandled_error(self, context: PipelineContext, error: BaseException) -> None:
        if isinstance(error, PipelineError):
            # expected per-request outcomes (denied, invalid, timed out...)
            self.logger.info(
                "%s in %s: %s", error.kind, context.handler.display_name, error.message
            )
            return
        self.logger.error(
            "Unhandled %s in %s: %s",
            type(error).__name__,
            context.handler.display_name,
            error,
            exc_info=(type(error), error, error.__traceback__),
        )
