"""PostgreSQL access layer for the EcoGuide backend."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Tuple

import psycopg
from psycopg.rows import dict_row

from errors import EcoGuideError, NotFoundError, PersistenceError, ValidationError
from models import Attempt, Item, ProgressSnapshot, User

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_float(value: Any) -> float:
    if value is None:
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_int(value: Any) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _item_from_row(row: Dict[str, Any]) -> Item:
    return Item(
        id=_to_int(row.get("id")),
        nombre=row.get("nombre") or "",
        categoria=row.get("categoria") or "",
        dificultad=row.get("dificultad") or "",
        co2_base=_to_float(row.get("co2_base")),
    )


def _fk_field(exc: psycopg.errors.ForeignKeyViolation) -> str:
    constraint = (exc.diag.constraint_name or "") if exc.diag else ""
    return "usuario_id" if "usuario" in constraint else "residuo_id"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PostgresRepository:
    """Authoritative store: users, the waste catalog and the attempt history.

    Every public method runs in its own connection and transaction. Atomicity of
    the attempt insert and the aggregate update relies on ``conn.transaction()``
    and on PostgreSQL row locks, never on in-process locking.
    """

    def __init__(self, conninfo: str):
        self.conninfo = conninfo

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self.conninfo, row_factory=dict_row)

    @contextmanager
    def _transaction(self, failure_message: str) -> Iterator[psycopg.Connection]:
        try:
            with self._connect() as conn:
                with conn.transaction():
                    yield conn
        except EcoGuideError:
            raise
        except psycopg.errors.ForeignKeyViolation as exc:
            field = _fk_field(exc)
            raise NotFoundError(f"{field} no existe", field=field) from exc
        except psycopg.errors.UniqueViolation as exc:
            raise ValidationError("El email ya existe.", field="email") from exc
        except psycopg.errors.DataError as exc:
            logger.warning("postgres rejected a value: %s", exc)
            raise ValidationError("Valor numerico fuera de rango") from exc
        except psycopg.Error as exc:
            logger.exception("postgres transaction failed: %s", failure_message)
            raise PersistenceError(failure_message) from exc

    def ping(self) -> bool:
        with self._connect() as conn:
            conn.execute("SELECT 1")
        return True

    # Progress --------------------------------------------------------------
    def _append_attempt(self, conn: psycopg.Connection, attempt: Attempt) -> Attempt:
        row = conn.execute(
            "INSERT INTO historial (usuario_id, residuo_id, acierto, fecha) "
            "VALUES (%s, %s, %s, NOW()) RETURNING fecha",
            (attempt.usuario_id, attempt.residuo_id, attempt.acierto),
        ).fetchone()
        attempt.fecha = row["fecha"] if row else None
        return attempt

    def _count_today(self, conn: psycopg.Connection, usuario_id: int) -> int:
        row = conn.execute(
            "SELECT COUNT(*) AS count_hoy FROM historial "
            "WHERE usuario_id = %s AND fecha::date = CURRENT_DATE",
            (usuario_id,),
        ).fetchone()
        return _to_int(row["count_hoy"]) if row else 0

    def _add_to_aggregate(self, conn: psycopg.Connection, usuario_id: int, puntos: int, co2: float) -> Dict[str, Any]:
        row = conn.execute(
            "UPDATE usuarios SET puntos = puntos + %s, co2_evitado = co2_evitado + %s "
            "WHERE id = %s RETURNING puntos, co2_evitado",
            (puntos, co2, usuario_id),
        ).fetchone()
        if row is None:
            raise NotFoundError("Usuario no encontrado", field="usuario_id")
        return row

    def record_attempt(
        self,
        usuario_id: int,
        residuo_id: int,
        acierto: bool,
        puntos: int,
        co2_evitado: float,
    ) -> Tuple[Attempt, ProgressSnapshot]:
        """Apply caller-supplied deltas and append the attempt in one transaction."""
        with self._transaction("Error al guardar progreso") as conn:
            totals = self._add_to_aggregate(conn, usuario_id, puntos, co2_evitado)
            attempt = self._append_attempt(conn, Attempt(usuario_id, residuo_id, acierto))
            today = self._count_today(conn, usuario_id)
        return attempt, ProgressSnapshot(
            puntos=_to_int(totals["puntos"]),
            co2_evitado=_to_float(totals["co2_evitado"]),
            clasificaciones_hoy=today,
        )

    def register_classification(
        self,
        usuario_id: int,
        residuo_id: int,
        acierto: bool,
    ) -> Tuple[Attempt, ProgressSnapshot]:
        """Compute the reward from the catalog and apply it under a user row lock.

        Concurrent submissions for the same user queue on ``FOR UPDATE`` so the
        day count and the aggregate they observe are never stale.
        """
        with self._transaction("Error al registrar clasificacion") as conn:
            user_row = conn.execute(
                "SELECT id FROM usuarios WHERE id = %s FOR UPDATE",
                (usuario_id,),
            ).fetchone()
            if user_row is None:
                raise NotFoundError("Usuario no encontrado", field="usuario_id")
            item_row = conn.execute(
                "SELECT id, nombre, categoria, dificultad, co2_base FROM residuos WHERE id = %s",
                (residuo_id,),
            ).fetchone()
            if item_row is None:
                raise NotFoundError("Residuo no encontrado", field="residuo_id")
            reward = _item_from_row(item_row).reward(acierto)
            totals = self._add_to_aggregate(conn, usuario_id, reward.puntos, reward.co2_evitado)
            attempt = self._append_attempt(conn, Attempt(usuario_id, residuo_id, acierto))
            today = self._count_today(conn, usuario_id)
        return attempt, ProgressSnapshot(
            puntos=_to_int(totals["puntos"]),
            co2_evitado=_to_float(totals["co2_evitado"]),
            clasificaciones_hoy=today,
        )

    # Catalog ---------------------------------------------------------------
    def random_items(self, limit: int = 10) -> List[Item]:
        with self._transaction("Error al cargar residuos") as conn:
            rows = conn.execute(
                "SELECT id, nombre, categoria, dificultad, co2_base FROM residuos ORDER BY RANDOM() LIMIT %s",
                (limit,),
            ).fetchall()
        return [_item_from_row(row) for row in rows]

    # Users -----------------------------------------------------------------
    def create_user(self, nombre: str, email: str, password_hash: str) -> User:
        with self._transaction("Error al registrar usuario") as conn:
            row = conn.execute(
                "INSERT INTO usuarios (nombre, email, password, puntos, co2_evitado) "
                "VALUES (%s, %s, %s, 0, 0) RETURNING id, nombre, email",
                (nombre, email, password_hash),
            ).fetchone()
        return User(id=_to_int(row["id"]), nombre=row["nombre"], email=row["email"])
