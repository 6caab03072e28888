"""Dual-write progress recording.

Stage one is the primary transaction in PostgreSQL: synchronous, fallible,
all-or-nothing. Stage two hands an :class:`AnalyticsEvent` to the mirror and
returns without waiting; whatever happens to it afterwards stays on the
mirror's side of the boundary.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from errors import AuthorizationError, ValidationError
from models import AnalyticsEvent, Attempt, ProgressSnapshot

logger = logging.getLogger(__name__)

# usuarios.puntos and the id columns are int4
MAX_INT = 2_147_483_647
MAX_CO2_PER_ATTEMPT = 1_000_000.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_object(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("El cuerpo de la solicitud debe ser un objeto JSON")
    return payload


def _require_id(payload: Dict[str, Any], field: str) -> int:
    value = payload.get(field)
    if value is None:
        raise ValidationError(f"Falta el campo {field}", field=field)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} debe ser un entero positivo", field=field)
    if value > MAX_INT:
        raise ValidationError(f"{field} fuera de rango", field=field)
    return value


def _require_bool(payload: Dict[str, Any], field: str) -> bool:
    if field not in payload or payload[field] is None:
        raise ValidationError(f"Falta el campo {field}", field=field)
    value = payload[field]
    if not isinstance(value, bool):
        raise ValidationError(f"{field} debe ser true o false", field=field)
    return value


def _require_points(payload: Dict[str, Any], field: str) -> int:
    value = payload.get(field)
    if value is None:
        raise ValidationError(f"Falta el campo {field}", field=field)
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} debe ser un entero no negativo", field=field)
    if value > MAX_INT:
        raise ValidationError(f"{field} fuera de rango", field=field)
    return value


def _require_amount(payload: Dict[str, Any], field: str) -> float:
    value = payload.get(field)
    if value is None:
        raise ValidationError(f"Falta el campo {field}", field=field)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} debe ser numerico", field=field)
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError(f"{field} debe ser un numero finito", field=field)
    if value < 0:
        raise ValidationError(f"{field} debe ser un numero no negativo", field=field)
    if value > MAX_CO2_PER_ATTEMPT:
        raise ValidationError(f"{field} fuera de rango", field=field)
    return float(value)


def authorize(identity: Optional[int], usuario_id: int) -> None:
    if identity is None:
        raise AuthorizationError("No autenticado")
    if identity != usuario_id:
        raise AuthorizationError("No autorizado para modificar este usuario", status_code=403)


class ProgressRecorder:
    def __init__(self, repo: Any, mirror: Any, clock: Callable[[], datetime] = _utcnow):
        self.repo = repo
        self.mirror = mirror
        self.clock = clock

    def record_progress(self, usuario_id: int, payload: Any, identity: Optional[int]) -> ProgressSnapshot:
        """Client-trusted variant: the caller states how much to add."""
        authorize(identity, usuario_id)
        body = _require_object(payload)
        residuo_id = _require_id(body, "residuo_id")
        acierto = _require_bool(body, "fue_acierto")
        puntos = _require_points(body, "puntos")
        co2_evitado = _require_amount(body, "co2_evitado")

        attempt, snapshot = self.repo.record_attempt(usuario_id, residuo_id, acierto, puntos, co2_evitado)
        logger.info(
            "progress recorded usuario=%s residuo=%s acierto=%s puntos=+%s",
            usuario_id, residuo_id, acierto, puntos,
        )
        self._mirror(attempt)
        return snapshot

    def register_classification(self, payload: Any, identity: Optional[int]) -> ProgressSnapshot:
        """Server-computed variant: reward derived from the catalog item."""
        if identity is None:
            raise AuthorizationError("No autenticado")
        body = _require_object(payload)
        usuario_id = _require_id(body, "usuario_id")
        authorize(identity, usuario_id)
        residuo_id = _require_id(body, "residuo_id")
        acierto = _require_bool(body, "fue_acierto")

        attempt, snapshot = self.repo.register_classification(usuario_id, residuo_id, acierto)
        logger.info(
            "classification registered usuario=%s residuo=%s acierto=%s hoy=%s",
            usuario_id, residuo_id, acierto, snapshot.clasificaciones_hoy,
        )
        self._mirror(attempt)
        return snapshot

    def _mirror(self, attempt: Attempt) -> None:
        try:
            self.mirror.submit(AnalyticsEvent.from_attempt(attempt, self.clock()))
        except Exception:
            logger.exception("could not hand attempt to analytics mirror (usuario=%s)", attempt.usuario_id)
