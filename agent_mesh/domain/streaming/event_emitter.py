from typing import Awaitable, Callable, Generic, List, TypeVar, Union
import inspect
import structlog

logger = structlog.get_logger(__name__)

E = TypeVar("E")
Subscriber = Callable[[E], Union[None, Awaitable[None]]]


class EventEmitter(Generic[E]):
    """Observer list with unsubscribe handles.

    Subscribers may be plain functions or coroutine functions. A subscriber
    that raises is logged and skipped; delivery to the rest continues.
    """

    def __init__(self, name: str):
        self.name = name
        self.subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self.subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self.subscribers:
                self.subscribers.remove(callback)

        return unsubscribe

    async def emit(self, event: E) -> None:
        for callback in list(self.subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    "Error in event subscriber",
                    emitter=self.name,
                    event_type=str(getattr(event, "type", "")),
                    error=str(e),
                )

    def __len__(self) -> int:
        return len(self.subscribers)
