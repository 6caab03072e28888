"""Shared fixtures: an in-memory primary store and controllable mirror sinks.

The fake repository keeps the same all-or-nothing contract as
PostgresRepository: a failing call leaves users and history untouched.
"""

import threading
from datetime import datetime, timezone

import pytest

from analytics import MirrorWorker
from errors import NotFoundError, PersistenceError, ValidationError
from models import Attempt, Item, ProgressSnapshot, User
from progress import ProgressRecorder
from web_app import create_app

FIXED_NOW = datetime(2026, 3, 14, 9, 30, tzinfo=timezone.utc)


class FakeRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self.users = {}
        self.items = {}
        self.history = []
        self.fail_next = False
        self.ping_error = None

    def add_user(self, user_id, puntos=0, co2_evitado=0.0, email=None):
        self.users[user_id] = {
            "nombre": f"user{user_id}",
            "email": email or f"user{user_id}@example.com",
            "puntos": puntos,
            "co2_evitado": co2_evitado,
        }

    def add_item(self, item_id, dificultad="facil", co2_base=0.5, categoria="plastico"):
        self.items[item_id] = Item(item_id, f"residuo{item_id}", categoria, dificultad, co2_base)

    def attempts_for(self, user_id):
        return [a for a in self.history if a.usuario_id == user_id]

    def _apply(self, usuario_id, residuo_id, acierto, puntos, co2):
        if self.fail_next:
            self.fail_next = False
            raise PersistenceError("Error al guardar progreso")
        if usuario_id not in self.users:
            raise NotFoundError("Usuario no encontrado", field="usuario_id")
        if residuo_id not in self.items:
            raise NotFoundError("residuo_id no existe", field="residuo_id")
        user = self.users[usuario_id]
        user["puntos"] += puntos
        user["co2_evitado"] = round(user["co2_evitado"] + co2, 6)
        attempt = Attempt(usuario_id, residuo_id, acierto, FIXED_NOW)
        self.history.append(attempt)
        snapshot = ProgressSnapshot(
            puntos=user["puntos"],
            co2_evitado=user["co2_evitado"],
            clasificaciones_hoy=len(self.attempts_for(usuario_id)),
        )
        return attempt, snapshot

    def record_attempt(self, usuario_id, residuo_id, acierto, puntos, co2_evitado):
        with self._lock:
            return self._apply(usuario_id, residuo_id, acierto, puntos, co2_evitado)

    def register_classification(self, usuario_id, residuo_id, acierto):
        with self._lock:
            item = self.items.get(residuo_id)
            reward = item.reward(acierto) if item else None
            return self._apply(
                usuario_id,
                residuo_id,
                acierto,
                reward.puntos if reward else 0,
                reward.co2_evitado if reward else 0.0,
            )

    def random_items(self, limit=10):
        if self.fail_next:
            self.fail_next = False
            raise PersistenceError("Error al cargar residuos")
        return list(self.items.values())[:limit]

    def create_user(self, nombre, email, password_hash):
        with self._lock:
            if any(u["email"] == email for u in self.users.values()):
                raise ValidationError("El email ya existe.", field="email")
            user_id = max(self.users, default=0) + 1
            self.users[user_id] = {
                "nombre": nombre,
                "email": email,
                "password": password_hash,
                "puntos": 0,
                "co2_evitado": 0.0,
            }
        return User(id=user_id, nombre=nombre, email=email)

    def ping(self):
        if self.ping_error is not None:
            raise self.ping_error
        return True


class RecordingSink:
    def __init__(self):
        self.events = []
        self.written = threading.Event()

    def insert_event(self, event):
        self.events.append(event)
        self.written.set()


class FailingSink:
    def __init__(self):
        self.calls = 0

    def insert_event(self, event):
        self.calls += 1
        raise ConnectionError("mongo unreachable")


class BlockingSink(RecordingSink):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def insert_event(self, event):
        self.release.wait(timeout=5)
        super().insert_event(event)


@pytest.fixture
def repo():
    fake = FakeRepository()
    fake.add_user(7, puntos=20, co2_evitado=1.0)
    fake.add_user(8)
    fake.add_item(3, dificultad="media", co2_base=0.5)
    fake.add_item(4, dificultad="dificil", co2_base=1.2)
    return fake


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def mirror(sink):
    worker = MirrorWorker(sink)
    yield worker
    worker.close()


@pytest.fixture
def recorder(repo, mirror):
    return ProgressRecorder(repo, mirror, clock=lambda: FIXED_NOW)


@pytest.fixture
def client(repo, recorder):
    app = create_app(repo, recorder)
    app.config["TESTING"] = True
    return app.test_client()
