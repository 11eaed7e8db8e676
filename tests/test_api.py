from __future__ import annotations

import unittest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rct_allocator.core.db import get_db
from rct_allocator.main import app
from rct_allocator.models.orm.base import Base
from rct_allocator.models.orm.experiment import ExperimentConfigORM
from rct_allocator.models.orm.participant import ParticipantORM


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self._SessionLocal = sessionmaker(bind=self._engine, autocommit=False, autoflush=False)
        Base.metadata.create_all(
            bind=self._engine,
            tables=[ExperimentConfigORM.__table__, ParticipantORM.__table__],
        )

        def _get_test_db():
            db = self._SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = _get_test_db
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self._engine.dispose()

    def _configure(self, names: list[str], sizes: list[int]) -> None:
        resp = self.client.put("/experiment/config/group-count", json={"count": len(names)})
        self.assertEqual(resp.status_code, 200)
        for index, (name, size) in enumerate(zip(names, sizes)):
            resp = self.client.put(
                f"/experiment/config/groups/{index}", json={"name": name, "size": size}
            )
            self.assertEqual(resp.status_code, 200)

    def test_default_config_on_first_read(self) -> None:
        resp = self.client.get("/experiment/config")
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["group_count"], 2)
        self.assertEqual(body["group_names"], ["Group 1", "Group 2"])
        self.assertEqual(body["group_sizes"], [30, 30])
        self.assertFalse(body["stratification_enabled"])
        self.assertEqual(body["strata"], {"high": 50, "low": 50})

    def test_group_count_changes_persist(self) -> None:
        self._configure(["A", "B", "C"], [5, 6, 7])
        body = self.client.put("/experiment/config/group-count", json={"count": 5}).json()
        self.assertEqual(body["group_names"], ["A", "B", "C", "Group 4", "Group 5"])
        self.assertEqual(body["group_sizes"], [5, 6, 7, 30, 30])

        body = self.client.put("/experiment/config/group-count", json={"count": 3}).json()
        self.assertEqual(body["group_names"], ["A", "B", "C"])
        self.assertEqual(self.client.get("/experiment/config").json()["group_sizes"], [5, 6, 7])

    def test_unknown_group_index_is_404(self) -> None:
        resp = self.client.put("/experiment/config/groups/2", json={"size": 3})
        self.assertEqual(resp.status_code, 404)

    def test_stratum_ratio(self) -> None:
        resp = self.client.put("/experiment/config/strata/high", json={"ratio": 70})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["strata"], {"high": 70, "low": 30})

        resp = self.client.put("/experiment/config/strata/medium", json={"ratio": 70})
        self.assertEqual(resp.status_code, 422)

    def test_end_to_end_two_groups_of_one(self) -> None:
        self._configure(["A", "B"], [1, 1])

        first = self.client.post("/participants", json={})
        self.assertEqual(first.status_code, 201)
        self.assertIn(first.json()["assigned_group_name"], {"A", "B"})
        self.assertIsNone(first.json()["severity"])

        second = self.client.post("/participants", json={"severity": None})
        self.assertEqual(second.status_code, 201)
        self.assertNotEqual(second.json()["assigned_group"], first.json()["assigned_group"])

        third = self.client.post("/participants", json={})
        self.assertEqual(third.status_code, 409)
        self.assertEqual(third.json()["detail"], "all groups full under current criteria")

        participants = self.client.get("/participants").json()
        self.assertEqual(
            [p["participant_id"] for p in participants],
            [first.json()["participant_id"], second.json()["participant_id"]],
        )
        self.assertTrue(participants[0]["participant_id"].endswith("_001"))
        self.assertTrue(participants[1]["participant_id"].endswith("_002"))
        self.assertEqual(self.client.get("/experiment/counts").json()["overall"], [1, 1])

    def test_stratified_requires_severity(self) -> None:
        self.client.put("/experiment/config/stratification", json={"enabled": True})

        resp = self.client.post("/participants", json={})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "severity required for stratified randomization")
        self.assertEqual(self.client.get("/participants").json(), [])

    def test_stratified_capacity(self) -> None:
        self._configure(["A", "B"], [10, 0])
        self.client.put("/experiment/config/stratification", json={"enabled": True})

        for _ in range(5):
            resp = self.client.post("/participants", json={"severity": "high"})
            self.assertEqual(resp.status_code, 201)
            self.assertEqual(resp.json()["assigned_group"], 1)

        self.assertEqual(
            self.client.post("/participants", json={"severity": "high"}).status_code, 409
        )
        self.assertEqual(
            self.client.post("/participants", json={"severity": "low"}).status_code, 201
        )

        counts = self.client.get("/experiment/counts").json()
        self.assertEqual(counts["overall"], [6, 0])
        self.assertEqual(counts["stratified"], {"high": [5, 0], "low": [1, 0]})

    def test_monitor(self) -> None:
        self._configure(["A", ""], [4, 2])
        self.client.put("/experiment/config/stratification", json={"enabled": True})
        self.client.put("/experiment/config/strata/low", json={"ratio": 25})
        self.client.post("/participants", json={"severity": "low"})

        body = self.client.get("/experiment/monitor").json()
        self.assertEqual(body["total_assigned"], 1)
        self.assertEqual(body["total_target"], 6)
        self.assertEqual([g["name"] for g in body["groups"]], ["A", "Group 2"])
        self.assertEqual([g["target"] for g in body["groups"]], [4, 2])
        # low targets: floor(4 * 25 / 100) = 1, floor(2 * 25 / 100) = 0
        self.assertEqual([g["target"] for g in body["stratified"]["low"]], [1, 0])
        self.assertEqual([g["assigned"] for g in body["stratified"]["low"]], [1, 0])
        self.assertEqual([g["target"] for g in body["stratified"]["high"]], [3, 1])
        self.assertEqual(body["groups"][0]["remaining"], 3)

    def test_export(self) -> None:
        self.assertEqual(self.client.get("/participants/export").status_code, 204)

        self.client.post("/participants", json={})
        resp = self.client.get("/participants/export")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("text/csv"))
        self.assertIn("rct_assignments_", resp.headers["content-disposition"])
        self.assertTrue(resp.content.startswith(b"\xef\xbb\xbf"))
        lines = resp.content.decode("utf-8-sig").split("\n")
        self.assertEqual(lines[0], "participantId,assignedGroup,assignedGroupName,severity,assignedAt")
        self.assertIn('"N/A"', lines[1])

    def test_reset(self) -> None:
        self._configure(["A", "B", "C"], [1, 1, 1])
        self.client.post("/participants", json={})

        resp = self.client.post("/experiment/reset")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["group_names"], ["Group 1", "Group 2"])
        self.assertEqual(self.client.get("/participants").json(), [])


if __name__ == "__main__":
    unittest.main()
