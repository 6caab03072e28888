"""Core data models used by the EcoGuide backend."""

from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional, Dict, Any


POINTS_PER_CORRECT = 10

DIFFICULTY_WEIGHTS = {
    "facil": 1.0,
    "media": 1.5,
    "dificil": 2.0,
}


@dataclass
class User:
    id: int
    nombre: str
    email: str
    puntos: int = 0
    co2_evitado: float = 0.0

    def public(self) -> Dict[str, Any]:
        return {"id": self.id, "nombre": self.nombre, "email": self.email}


@dataclass
class Item:
    id: int
    nombre: str
    categoria: str
    dificultad: str
    co2_base: float

    @property
    def weight(self) -> float:
        return DIFFICULTY_WEIGHTS.get((self.dificultad or "").strip().lower(), 1.0)

    def reward(self, correct: bool) -> "Reward":
        if not correct:
            return Reward(puntos=0, co2_evitado=0.0)
        return Reward(puntos=POINTS_PER_CORRECT, co2_evitado=round(self.co2_base * self.weight, 4))


@dataclass
class Reward:
    puntos: int
    co2_evitado: float


@dataclass
class Attempt:
    usuario_id: int
    residuo_id: int
    acierto: bool
    fecha: Optional[datetime] = None


@dataclass
class AnalyticsEvent:
    usuario_id: int
    residuo_id: int
    es_correcto: bool
    puntos_obtenidos: int
    fecha: datetime

    @classmethod
    def from_attempt(cls, attempt: Attempt, occurred_at: datetime) -> "AnalyticsEvent":
        # Coarse behavioral signal, independent of the delta actually applied.
        return cls(
            usuario_id=attempt.usuario_id,
            residuo_id=attempt.residuo_id,
            es_correcto=attempt.acierto,
            puntos_obtenidos=POINTS_PER_CORRECT if attempt.acierto else 0,
            fecha=attempt.fecha or occurred_at,
        )

    def to_document(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProgressSnapshot:
    puntos: int
    co2_evitado: float
    clasificaciones_hoy: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "puntos": self.puntos,
            "co2_evitado": self.co2_evitado,
            "clasificaciones_hoy": self.clasificaciones_hoy,
        }
