from kairos.models import SessionStatus

from tests.base import CatalogueTestCase, at


class SessionsApiTestCase(CatalogueTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.app.config["SESSION_CLOCK"] = self.clock
        self.client = self.app.test_client()

    def _create(self, start, end, **overrides):
        payload = {
            "type": "EXTRA",
            "mode": "IN_PERSON",
            "scheduled_start": start.isoformat(),
            "scheduled_end": end.isoformat(),
            "group_id": self.group.id,
            "room_id": self.room.id,
        }
        payload.update(overrides)
        return self.client.post("/api/sessions", json=payload)

    def test_health(self) -> None:
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"status": "ok", "database": "ok"})

    def test_create_and_fetch_session(self) -> None:
        response = self._create(at(10), at(12))
        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual(body["status"], "SCHEDULED")
        self.assertEqual(body["teacher_id"], self.alice.id)
        self.assertEqual(body["duration_minutes"], 120)

        fetched = self.client.get(f"/api/sessions/{body['id']}")
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.get_json()["scheduled_start"], at(10).isoformat())

    def test_conflict_returns_409_with_details(self) -> None:
        first = self._create(at(10), at(12)).get_json()
        response = self._create(at(11), at(13), teacher_id=self.bruno.id)

        self.assertEqual(response.status_code, 409)
        body = response.get_json()
        self.assertEqual(body["error"], "conflict")
        self.assertEqual(body["details"]["session_id"], first["id"])
        self.assertEqual(body["details"]["resource"], "room")

    def test_short_session_returns_400(self) -> None:
        response = self._create(at(10), at(10, 29))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "validation_error")

    def test_unknown_session_returns_404(self) -> None:
        response = self.client.get("/api/sessions/9999")
        self.assertEqual(response.status_code, 404)
        body = response.get_json()
        self.assertEqual(body["error"], "not_found")
        self.assertEqual(body["message"], "Session 9999 does not exist")

    def test_generate_preview_and_list(self) -> None:
        payload = {"group_id": self.group.id, "date_from": "2025-03-03", "date_to": "2025-03-16"}

        preview = self.client.post("/api/sessions/preview", json=payload)
        self.assertEqual(preview.status_code, 200)
        self.assertEqual(len(preview.get_json()), 2)

        generated = self.client.post("/api/sessions/generate", json=payload)
        self.assertEqual(generated.status_code, 201)
        self.assertEqual(len(generated.get_json()), 2)

        listing = self.client.get(
            "/api/sessions",
            query_string={"group_id": self.group.id, "type": "regular", "per_page": 1},
        )
        body = listing.get_json()
        self.assertEqual(body["total"], 2)
        self.assertEqual(body["pages"], 2)
        self.assertEqual(len(body["items"]), 1)

    def test_start_too_early_returns_timing_error(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        response = self.client.post(f"/api/sessions/{session_id}/start", json={})
        self.assertEqual(response.status_code, 400)
        body = response.get_json()
        self.assertEqual(body["error"], "timing_window_violation")
        self.assertEqual(body["details"]["operation"], "start")

    def test_full_lifecycle(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        self.clock.now = at(9, 45)
        started = self.client.post(f"/api/sessions/{session_id}/start", json={})
        self.assertEqual(started.get_json()["status"], "IN_PROGRESS")

        self.clock.now = at(12)
        completed = self.client.post(
            f"/api/sessions/{session_id}/complete",
            json={"topics_covered": "Gaussian elimination"},
        )
        self.assertEqual(completed.status_code, 200)
        self.assertEqual(completed.get_json()["status"], "COMPLETED")

        cancelled = self.client.post(
            f"/api/sessions/{session_id}/cancel", json={"reason": "Too late for that"}
        )
        self.assertEqual(cancelled.status_code, 400)
        self.assertEqual(cancelled.get_json()["error"], "invalid_transition")

    def test_postpone_with_reschedule(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        response = self.client.post(
            f"/api/sessions/{session_id}/postpone",
            json={
                "reason": "Teacher attending a conference",
                "reschedule": {
                    "start": at(10, days=2).isoformat(),
                    "end": at(12, days=2).isoformat(),
                },
            },
        )
        self.assertEqual(response.status_code, 200)
        recovery = response.get_json()
        self.assertEqual(recovery["type"], "RECOVERY")
        self.assertEqual(recovery["recovery_for_session_id"], session_id)

        original = self.service.get_session(session_id)
        self.assertEqual(original.status, SessionStatus.POSTPONED)

        pending = self.client.get("/api/sessions/requiring-action").get_json()
        self.assertEqual(pending, [])

        chain = self.client.get(f"/api/sessions/{recovery['id']}/chain").get_json()
        self.assertEqual([s["id"] for s in chain], [session_id, recovery["id"]])

    def test_change_mode_and_reschedule(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        response = self.client.post(
            f"/api/sessions/{session_id}/mode",
            json={"mode": "ONLINE", "remote_meeting_id": "meet-3", "reason": "Heating failure"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.get_json()["room_id"])

        moved = self.client.post(
            f"/api/sessions/{session_id}/reschedule",
            json={
                "scheduled_start": at(14).isoformat(),
                "scheduled_end": at(15).isoformat(),
            },
        )
        self.assertEqual(moved.status_code, 200)
        self.assertEqual(moved.get_json()["scheduled_start"], at(14).isoformat())
        self.assertEqual(moved.get_json()["session_date"], "2025-03-03")

    def test_missing_payload_field_is_rejected(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        response = self.client.post(f"/api/sessions/{session_id}/cancel", json={})
        self.assertEqual(response.status_code, 400)

    def test_reschedule_into_occupied_room_returns_409(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        blocker = self._create(at(14), at(16), teacher_id=self.bruno.id).get_json()

        response = self.client.post(
            f"/api/sessions/{session_id}/reschedule",
            json={
                "scheduled_start": at(15).isoformat(),
                "scheduled_end": at(17).isoformat(),
            },
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["details"]["session_id"], blocker["id"])

    def test_reschedule_cancelled_session_returns_400(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        self.client.post(
            f"/api/sessions/{session_id}/cancel", json={"reason": "Building closed for repairs"}
        )
        response = self.client.post(
            f"/api/sessions/{session_id}/reschedule",
            json={
                "scheduled_start": at(14).isoformat(),
                "scheduled_end": at(16).isoformat(),
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "invalid_transition")

    def test_start_twice_returns_invalid_transition(self) -> None:
        session_id = self._create(at(10), at(12)).get_json()["id"]
        self.clock.now = at(10)
        self.client.post(f"/api/sessions/{session_id}/start", json={})
        response = self.client.post(f"/api/sessions/{session_id}/start", json={})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json()["error"], "invalid_transition")
