"""
Minimal publish/subscribe primitive.

Every notification source in DynaMouse (devices, displays, config,
assignments) derives from Observer and declares its listener set as a small
dataclass whose callbacks default to `noop`. Subscribers only fill in the
callbacks they care about:

    cancel = device.register_listener(PointerListener(moved=on_moved))
    ...
    cancel()  # safe to call again
"""

from typing import Any, Callable, Generic, List, TypeVar

L = TypeVar('L')


def noop(*args, **kwargs) -> None:
    """Default listener callback."""
    return None


class _Subscription:
    """One registered listener and whether it is still live."""

    __slots__ = ('listener', 'active')

    def __init__(self, listener):
        self.listener = listener
        self.active = True


class Observer(Generic[L]):
    """Base class for anything that notifies listeners of type L."""

    def __init__(self):
        self._subscriptions: List[_Subscription] = []

    def register_listener(self, listener: L) -> Callable[[], None]:
        """
        Subscribe a listener set.

        Returns a cancel function that removes exactly this subscription.
        Calling it more than once is a no-op.
        """
        subscription = _Subscription(listener)
        self._subscriptions.append(subscription)

        def cancel():
            if not subscription.active:
                return
            subscription.active = False
            self._subscriptions.remove(subscription)

        return cancel

    def iterate_listeners(self, callback: Callable[[L], Any]):
        """
        Invoke callback for every live listener, in registration order.

        Iterates over a snapshot, so listeners may cancel themselves or each
        other during notification. A listener cancelled before its turn is
        skipped.
        """
        for subscription in list(self._subscriptions):
            if subscription.active:
                callback(subscription.listener)

    @property
    def listener_count(self) -> int:
        return len(self._subscriptions)
