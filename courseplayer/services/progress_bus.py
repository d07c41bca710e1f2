# courseplayer/services/progress_bus.py
"""
Canal de notificaciones de progreso entre vistas abiertas del mismo curso.

Las suscripciones se acotan por (user_id, course_id). Cada vista se suscribe
al montarse y cancela su suscripción al desmontarse; no hay listeners
globales implícitos.
"""
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Tuple

from courseplayer.schemas.progress import ProgressEvent

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]
ScopeKey = Tuple[str, str]


class Subscription:
    def __init__(self, bus: "ProgressBus", key: ScopeKey, listener: ProgressListener):
        self._bus = bus
        self.key = key
        self.listener = listener
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.unsubscribe()


class ProgressBus:
    def __init__(self):
        self._subscriptions: Dict[ScopeKey, List[Subscription]] = defaultdict(list)

    def subscribe(self, user_id: str, course_id: str, listener: ProgressListener) -> Subscription:
        subscription = Subscription(self, (str(user_id), str(course_id)), listener)
        self._subscriptions[subscription.key].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        listeners = self._subscriptions.get(subscription.key)
        if not listeners:
            return
        if subscription in listeners:
            listeners.remove(subscription)
        if not listeners:
            del self._subscriptions[subscription.key]

    def subscriber_count(self, user_id: str, course_id: str) -> int:
        return len(self._subscriptions.get((str(user_id), str(course_id)), []))

    def publish(self, event: ProgressEvent) -> int:
        """
        Entrega el evento a todas las suscripciones del alcance.
        Una vista que falla no impide la entrega a las demás.
        Devuelve el número de entregas exitosas.
        """
        delivered = 0
        for subscription in list(self._subscriptions.get((event.user_id, event.course_id), [])):
            try:
                subscription.listener(event)
                delivered += 1
            except Exception:
                logger.exception(
                    f"Listener de progreso falló: user={event.user_id}, course={event.course_id}"
                )
        return delivered


# Registro global del proceso
progress_bus = ProgressBus()
