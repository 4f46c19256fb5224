from __future__ import annotations

import dataclasses
import random
import unittest

from fastapi.testclient import TestClient

from db_brain import Brain
from db_brain.service import create_app
from db_brain.settings import BrainSettings

SETTINGS = BrainSettings(
    sqlite_path=":memory:",
    order=1,
    tokenizer="cobe",
    host="127.0.0.1",
    port=8080,
    busy_timeout_seconds=5.0,
    default_precision=0.7,
    seed=None,
    env_file=None,
)


class ServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.brain = Brain(settings=SETTINGS, rng=random.Random(5))
        self.client = TestClient(create_app(self.brain))

    def tearDown(self) -> None:
        if not self.brain.closed:
            self.brain.close()

    def test_health(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["order"], 1)
        self.assertEqual(body["tokens"], 0)

    def test_learn_then_predict(self) -> None:
        response = self.client.post("/learn", json={"text": "hello world"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "learned_tokens": 2, "remembered": False})

        response = self.client.post("/predict", json={"text": "hello"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"reply": "world"})

    def test_predict_strips_code_markers(self) -> None:
        self.client.post("/learn", json={"text": "// FILETYPE: go\nhello world"})
        self.assertIsNone(self.brain.store.token_id("FILETYPE"))
        response = self.client.post("/predict", json={"text": "// FILETYPE: go\nhello"})
        self.assertEqual(response.json()["reply"], "world")

    def test_max_words(self) -> None:
        self.client.post("/learn", json={"text": "one two three four"})
        response = self.client.post("/predict", json={"text": "one", "max_words": 2})
        self.assertEqual(response.json()["reply"], "two three")

    def test_remembered_completion(self) -> None:
        response = self.client.post(
            "/learn", json={"text": "return 42", "context": "def answer():"}
        )
        self.assertTrue(response.json()["remembered"])
        response = self.client.post(
            "/predict", json={"text": "def answer():", "use_cache": True}
        )
        self.assertEqual(response.json()["reply"], "return 42")

    def test_empty_store_is_a_server_error(self) -> None:
        response = self.client.post("/predict", json={"text": "hello"})
        self.assertEqual(response.status_code, 500)
        self.assertIn("detail", response.json())

    def test_malformed_requests(self) -> None:
        self.assertEqual(self.client.post("/predict", json={}).status_code, 422)
        self.assertEqual(
            self.client.post("/predict", json={"text": "x", "max_words": -1}).status_code, 422
        )
        self.assertEqual(self.client.post("/learn", json={"context": "x"}).status_code, 422)

    def test_closed_brain_is_unavailable(self) -> None:
        self.brain.close()
        response = self.client.post("/learn", json={"text": "too late"})
        self.assertEqual(response.status_code, 503)

    def test_shutdown_closes_brain(self) -> None:
        brain = Brain(settings=dataclasses.replace(SETTINGS, order=2))
        with TestClient(create_app(brain, close_on_shutdown=True)) as client:
            self.assertEqual(client.get("/health").json()["order"], 2)
        self.assertTrue(brain.closed)


if __name__ == "__main__":
    unittest.main()
