import random
import unittest

from imposter import SessionController, WordSource
from imposter_web import GameHost, create_app


class WebTests(unittest.TestCase):
    def setUp(self) -> None:
        controller = SessionController(words=WordSource(["Pizza"]), rng=random.Random(7))
        self.host = GameHost(controller).start()
        self.client = create_app(self.host).test_client()

    def tearDown(self) -> None:
        self.host.stop()

    def add(self, *names: str):
        resp = None
        for n in names:
            resp = self.client.post("/api/players", json={"name": n})
            self.assertEqual(resp.status_code, 200)
        return resp

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/").status_code, 200)
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_data(as_text=True), "healthy")

    def test_roster_edits(self) -> None:
        resp = self.add("Ana", "Ana", " Bea ")
        self.assertEqual(resp.get_json()["roster"], ["Ana", "Bea"])

        resp = self.client.delete("/api/players/Carl")
        self.assertEqual(resp.get_json()["roster"], ["Ana", "Bea"])
        resp = self.client.delete("/api/players/Ana")
        self.assertEqual(resp.get_json()["roster"], ["Bea"])

    def test_bad_body(self) -> None:
        resp = self.client.post("/api/players", data="nope", content_type="text/plain")
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post("/api/players", json={"name": 3})
        self.assertEqual(resp.status_code, 400)

    def test_start_requires_three(self) -> None:
        self.add("Ana", "Bea")
        resp = self.client.post("/api/start")
        self.assertEqual(resp.status_code, 400)
        self.assertIn("insufficient participants", resp.get_json()["error"])
        self.assertEqual(self.client.get("/api/state").get_json()["stage"], "setup")

    def test_play_flow(self) -> None:
        self.add("Ana", "Bea", "Carl")
        self.assertTrue(self.client.get("/api/state").get_json()["can_start"])

        snap = self.client.post("/api/start").get_json()
        self.assertEqual(snap["stage"], "playing")
        self.assertEqual(sorted(p["name"] for p in snap["players"]), ["Ana", "Bea", "Carl"])
        self.assertIsNone(snap["first_player"])

        snap = self.client.post("/api/cards/0/toggle").get_json()
        card = snap["players"][0]
        self.assertTrue(card["revealed"])
        self.assertIn(card["role"], ("Pizza", "IMPOSTOR"))
        self.assertEqual(snap["timers"], {"0": 5})

        snap = self.client.post("/api/cards/0/toggle").get_json()
        self.assertFalse(snap["players"][0]["revealed"])
        self.assertEqual(snap["timers"], {})

        snap = self.client.post("/api/first-player/toggle").get_json()
        first = snap["first_player"]
        self.assertIn(first, ("Ana", "Bea", "Carl"))
        snap = self.client.post("/api/first-player/shuffle").get_json()
        self.assertNotEqual(snap["first_player"], first)

        snap = self.client.post("/api/round").get_json()
        self.assertEqual(snap["round_no"], 2)
        self.assertFalse(snap["show_first_player"])

        snap = self.client.post("/api/reset").get_json()
        self.assertEqual(snap["stage"], "setup")
        self.assertEqual(snap["roster"], [])
        self.assertEqual(snap["players"], [])


if __name__ == "__main__":
    unittest.main()
