"""
主要APIエンドポイントのE2E挙動を検証するテスト。
E2E tests for the application's main API endpoints.
"""
import importlib
import os
import random
import unittest
from unittest import mock

from sqlalchemy.exc import OperationalError


class _DummyRedisBackend:
    """
    テスト用の最小Redisバックエンド（インメモリ）実装。
    Minimal in-memory Redis backend used for E2E stubbing.
    """
    def __init__(self):
        self.store = {}

    def setex(self, key, _ttl, value):
        self.store[key] = value

    def set(self, key, value):
        self.store[key] = value

    def get(self, key):
        return self.store.get(key)

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)


ORIGIN = {"Origin": "http://localhost:5173"}

HIKING_TOUR = {
    "name": "Sato Family (3)",
    "invoice": "INV-E2E-1",
    "start_date": "2024-06-01",
    "pax": 3,
    "arrival": "2024-06-01 | 10:00 | AC123",
    "departure": "2024-06-04 | 09:00 | AC456",
    "accommodation": "Explorer Hotel",
    "hiking": "Yes",
}


class ApiE2ETests(unittest.TestCase):
    """
    Flask APIのCSRF・セッション・到着スケジュールを網羅するE2Eテスト群。
    E2E test cases covering CSRF, sessions, tours and the arrival schedule.
    """
    @classmethod
    def setUpClass(cls):
        """
        EN: Prepare test fixtures.
        JP: テストの前提データを準備する。
        """
        os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
        # 起動時にテーブル作成とデモ管理者の作成が行われる
        cls.run_module = importlib.import_module("run")

    def setUp(self):
        """
        EN: Prepare test fixtures.
        JP: テストの前提データを準備する。
        """
        from backend import notifications, redis_client
        from backend.routes import arrival

        self._env_backup = os.environ.copy()

        self.redis_backend = _DummyRedisBackend()
        self._orig_get_client = redis_client.get_redis_client
        redis_client.get_redis_client = lambda: self.redis_backend

        self._orig_rng = arrival.schedule_rng
        arrival.schedule_rng = random.Random(7)

        patcher = mock.patch.object(notifications, "send_notification", return_value=None)
        self.sent = patcher.start()
        self.addCleanup(patcher.stop)

        self.app = self.run_module.app
        self.app.config["TESTING"] = True
        self.client = self.app.test_client()

    def tearDown(self):
        """
        EN: Clean up test fixtures.
        JP: テスト後の状態をクリーンアップする。
        """
        from backend import redis_client
        from backend.routes import arrival

        redis_client.get_redis_client = self._orig_get_client
        arrival.schedule_rng = self._orig_rng
        os.environ.clear()
        os.environ.update(self._env_backup)

    def _login(self, email="admin@example.com", password="password"):
        response = self.client.post(
            "/api/auth/login", json={"email": email, "password": password}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 200)
        cookie = response.headers.get("Set-Cookie", "")
        return cookie.split(";", 1)[0].split("=", 1)[1]

    def _create_tour(self, **overrides):
        payload = dict(HIKING_TOUR)
        payload.update(overrides)
        response = self.client.post("/api/tours", json=payload, headers=ORIGIN)
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def _select(self, tour_id):
        return self.client.post("/api/arrival/select", json={"tour_id": tour_id}, headers=ORIGIN)

    def _unlock(self, tour_id):
        self.assertEqual(self.client.post(f"/api/arrival/{tour_id}/edit", headers=ORIGIN).status_code, 200)
        response = self.client.post(f"/api/arrival/{tour_id}/edit/confirm", headers=ORIGIN)
        self.assertEqual(response.get_json()["edit_state"], "editable")

    def test_login_requires_csrf(self):
        """
        EN: Test login requires csrf behavior.
        JP: login requires csrf の挙動を検証するテスト。
        """
        response = self.client.post(
            "/api/auth/login", json={"email": "admin@example.com", "password": "password"},
        )
        self.assertEqual(response.status_code, 403)

    def test_login_rejects_bad_password(self):
        response = self.client.post(
            "/api/auth/login", json={"email": "admin@example.com", "password": "nope"}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 401)

    def test_login_sets_cookie_and_session(self):
        """
        EN: Test login sets cookie and session behavior.
        JP: ログインでCookieが設定されセッション情報が取得できることを検証するテスト。
        """
        self._login()
        response = self.client.get("/api/auth/session")
        user = response.get_json()["user"]
        self.assertEqual(user["email"], "admin@example.com")
        self.assertEqual(user["role"], "admin")

    def test_logout_clears_session(self):
        self._login()
        self.assertEqual(self.client.post("/api/auth/logout", headers=ORIGIN).status_code, 200)
        self.assertEqual(self.client.get("/api/tours").status_code, 401)

    def test_tours_require_login(self):
        self.assertEqual(self.client.get("/api/tours").status_code, 401)

    def test_tour_crud(self):
        """
        EN: Test tour crud behavior.
        JP: ツアーの作成・取得・更新・削除と通知送信を検証するテスト。
        """
        self._login()
        created = self._create_tour(start_date="2024/06/01")
        self.assertEqual(created["start_date"], "2024-06-01")
        self.assertEqual(self.sent.call_count, 1)

        tour_id = created["id"]
        response = self.client.get(f"/api/tours/{tour_id}")
        self.assertEqual(response.get_json()["name"], "Sato Family (3)")
        # JSONのキーはモデルの定義順のまま返す
        self.assertTrue(response.get_data(as_text=True).startswith('{"id":'))

        listed = self.client.get("/api/tours?invoice=INV-E2E-1").get_json()
        self.assertIn(tour_id, [tour["id"] for tour in listed])

        response = self.client.put(f"/api/tours/{tour_id}", json={"pax": 4}, headers=ORIGIN)
        self.assertEqual(response.get_json()["pax"], 4)
        notification = self.sent.call_args[0][0]
        self.assertEqual(notification.action, "update")
        self.assertEqual(notification.changes, {"pax": {"old": 3, "new": 4}})

        self.assertEqual(self.client.delete(f"/api/tours/{tour_id}", headers=ORIGIN).status_code, 200)
        self.assertEqual(self.client.get(f"/api/tours/{tour_id}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/tours/{tour_id}", headers=ORIGIN).status_code, 404)

    def test_select_seeds_schedule(self):
        """
        EN: Test select seeds schedule behavior.
        JP: ツアー選択で旅程が生成され、中日に有効なアクティビティが割り当てられることを検証するテスト。
        """
        self._login()
        tour_id = self._create_tour()["id"]

        response = self._select(tour_id)
        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["selected"], tour_id)
        self.assertEqual(payload["day_count"], 4)
        self.assertEqual(payload["edit_state"], "locked")

        itinerary = payload["itinerary"]
        self.assertEqual([day["day_label"] for day in itinerary], ["Arrival Day", "1st Day", "2nd Day", "3rd Day"])
        self.assertEqual(itinerary[0]["kind"], "arrival")
        self.assertEqual(itinerary[0]["payment_info"], "3")
        self.assertEqual(itinerary[3]["kind"], "departure")
        for day in itinerary[1:3]:
            self.assertEqual([activity["name"] for activity in day["activities"]], ["Cameron Fall Hiking"])

        # 同じセッション内では再生成しない
        again = self.client.get(f"/api/arrival/{tour_id}/itinerary").get_json()
        self.assertEqual(again["schedule"], payload["schedule"])

    def test_select_rejects_invalid_ids(self):
        self._login()
        self.assertEqual(self.client.post("/api/arrival/select", json={}, headers=ORIGIN).status_code, 400)
        self.assertEqual(self._select("7").status_code, 400)
        self.assertEqual(self._select(999999).status_code, 404)

        response = self._select(None)
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.get_json()["selected"])

    def test_edit_and_save_flow(self):
        """
        EN: Test edit and save flow behavior.
        JP: 編集モードの解除・変更・保存・再ロックの一連の流れを検証するテスト。
        """
        self._login()
        tour_id = self._create_tour()["id"]
        self._select(tour_id)

        # 編集モードでない変更は拒否される
        response = self.client.put(f"/api/arrival/{tour_id}/days/1/note", json={"note": "x"}, headers=ORIGIN)
        self.assertEqual(response.status_code, 409)
        response = self.client.post(f"/api/arrival/{tour_id}/edit/confirm", headers=ORIGIN)
        self.assertEqual(response.status_code, 409)

        self._unlock(tour_id)

        response = self.client.put(
            f"/api/arrival/{tour_id}/days/1/note", json={"note": "Bring boots"}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["itinerary"][1]["note"], "Bring boots")

        response = self.client.post(
            f"/api/arrival/{tour_id}/days/2/activities", json={"activity_key": "city_tour"}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 200)
        activities = response.get_json()["itinerary"][2]["activities"]
        self.assertEqual(activities[-1], {"name": "City Tour", "timings": ["10:00~10:15 AM - 12:00 PM"]})

        response = self.client.put(
            f"/api/arrival/{tour_id}/days/2/activities/0", json={"activity": None}, headers=ORIGIN,
        )
        self.assertEqual(
            [activity["name"] for activity in response.get_json()["itinerary"][2]["activities"]],
            ["City Tour"],
        )

        response = self.client.post(
            f"/api/arrival/{tour_id}/days/1/activities", json={"activity_key": "bogus"}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.put(f"/api/arrival/{tour_id}/days/9/note", json={"note": "x"}, headers=ORIGIN)
        self.assertEqual(response.status_code, 400)

        # 保存前はDBに何もない
        self.assertEqual(self.client.get(f"/api/tours/{tour_id}/schedule").status_code, 404)

        response = self.client.post(f"/api/arrival/{tour_id}/save", headers=ORIGIN)
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["saved"])
        notification = self.sent.call_args[0][0]
        self.assertEqual(notification.type, "arrival")

        saved = self.client.get(f"/api/tours/{tour_id}/schedule").get_json()["schedule"]
        self.assertEqual(saved["1"]["note"], "Bring boots")
        self.assertEqual(saved["2"]["activities"], [{"name": "City Tour", "timings": ["10:00~10:15 AM - 12:00 PM"]}])

        response = self.client.post(f"/api/arrival/{tour_id}/edit/done", headers=ORIGIN)
        self.assertEqual(response.get_json()["edit_state"], "locked")

    def test_activities_only_on_middle_days(self):
        """
        EN: Test activities only on middle days behavior.
        JP: 到着日・出発日へのアクティビティ追加が拒否され、メモは設定できることを検証するテスト。
        """
        self._login()
        tour_id = self._create_tour()["id"]
        self._select(tour_id)
        self._unlock(tour_id)

        for day_index in (0, 3):
            response = self.client.post(
                f"/api/arrival/{tour_id}/days/{day_index}/activities",
                json={"activity_key": "city_tour"},
                headers=ORIGIN,
            )
            self.assertEqual(response.status_code, 400)

        activity = {"name": "City Tour", "timings": ["3:00 PM - 4:30 PM"]}
        response = self.client.put(
            f"/api/arrival/{tour_id}/days/0/activities/0", json={"activity": activity}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 400)

        schedule = self.client.get(f"/api/arrival/{tour_id}/itinerary").get_json()["schedule"]
        self.assertEqual(schedule["0"]["activities"], [])
        self.assertEqual(schedule["3"]["activities"], [])

        response = self.client.put(
            f"/api/arrival/{tour_id}/days/3/note", json={"note": "Early checkout"}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["itinerary"][3]["note"], "Early checkout")

    def test_post_schedule_rejects_invalid_day_keys(self):
        self._login()
        tour_id = self._create_tour()["id"]
        day = {"activities": [], "note": "n"}

        for key in ("first", "-1", "1.5"):
            response = self.client.post(
                f"/api/tours/{tour_id}/schedule", json={"1": day, key: day}, headers=ORIGIN,
            )
            self.assertEqual(response.status_code, 400)
        self.assertEqual(self.client.get(f"/api/tours/{tour_id}/schedule").status_code, 404)

        # 旅程の日数を超えるキーは保存される
        response = self.client.post(f"/api/tours/{tour_id}/schedule", json={"9": day}, headers=ORIGIN)
        self.assertEqual(response.status_code, 200)

    def test_switching_tours_discards_unsaved_edits(self):
        """
        EN: Test switching tours discards unsaved edits behavior.
        JP: 別のツアーを選択すると未保存の編集が破棄されることを検証するテスト。
        """
        self._login()
        first = self._create_tour()["id"]
        second = self._create_tour(name="Kato")["id"]

        self._select(first)
        self._unlock(first)
        self.client.put(f"/api/arrival/{first}/days/1/note", json={"note": "draft"}, headers=ORIGIN)

        response = self._select(second)
        self.assertEqual(response.get_json()["edit_state"], "locked")

        payload = self.client.get(f"/api/arrival/{first}/itinerary").get_json()
        self.assertEqual(payload["schedule"], {})
        self.assertEqual(payload["itinerary"][1]["note"], "")
        self.assertEqual(payload["edit_state"], "locked")

        response = self.client.post(f"/api/arrival/{first}/save", headers=ORIGIN)
        self.assertEqual(response.status_code, 409)

    def test_edit_mode_requires_selected_tour(self):
        self._login()
        tour_id = self._create_tour()["id"]
        response = self.client.post(f"/api/arrival/{tour_id}/edit", headers=ORIGIN)
        self.assertEqual(response.status_code, 409)

    def test_save_failure_is_retryable(self):
        """
        EN: Test save failure is retryable behavior.
        JP: 保存失敗時に503と再試行可能フラグが返り、編集内容が残ることを検証するテスト。
        """
        from backend.schedule_store import ScheduleRepository

        self._login()
        tour_id = self._create_tour()["id"]
        self._select(tour_id)
        self._unlock(tour_id)
        self.client.put(f"/api/arrival/{tour_id}/days/1/note", json={"note": "keep me"}, headers=ORIGIN)

        failure = OperationalError("UPDATE tour_schedules", {}, Exception("db down"))
        with mock.patch.object(ScheduleRepository, "upsert", side_effect=failure):
            response = self.client.post(f"/api/arrival/{tour_id}/save", headers=ORIGIN)
        self.assertEqual(response.status_code, 503)
        self.assertTrue(response.get_json()["retryable"])

        payload = self.client.get(f"/api/arrival/{tour_id}/itinerary").get_json()
        self.assertEqual(payload["itinerary"][1]["note"], "keep me")

        response = self.client.post(f"/api/arrival/{tour_id}/save", headers=ORIGIN)
        self.assertEqual(response.status_code, 200)

    def test_concurrent_save_is_rejected(self):
        from backend import session_request_lock

        session_id = self._login()
        tour_id = self._create_tour()["id"]
        self._select(tour_id)

        key = session_request_lock.lock_key(session_id, tour_id)
        self.assertTrue(session_request_lock.acquire_lock(key))
        try:
            response = self.client.post(f"/api/arrival/{tour_id}/save", headers=ORIGIN)
        finally:
            session_request_lock.release_lock(key)
        self.assertEqual(response.status_code, 409)

    def test_post_schedule_replaces_whole_overlay(self):
        self._login()
        tour_id = self._create_tour()["id"]
        schedule = {"1": {"activities": [{"name": "Custom", "timings": ["9:00 AM"]}], "note": "n"}}

        response = self.client.post(f"/api/tours/{tour_id}/schedule", json=schedule, headers=ORIGIN)
        self.assertEqual(response.status_code, 200)
        saved = self.client.get(f"/api/tours/{tour_id}/schedule").get_json()["schedule"]
        self.assertEqual(saved, schedule)

        response = self.client.post(
            f"/api/tours/{tour_id}/schedule", json={"1": {"activities": "nope"}}, headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 400)
        response = self.client.post("/api/tours/999999/schedule", json=schedule, headers=ORIGIN)
        self.assertEqual(response.status_code, 404)

        # 保存済みのスケジュールは選択時にそのまま使われる
        payload = self._select(tour_id).get_json()
        self.assertEqual(payload["itinerary"][1]["activities"], [{"name": "Custom", "timings": ["9:00 AM"]}])
        self.assertEqual(payload["itinerary"][2]["activities"], [])

    def test_print_renders_html(self):
        """
        EN: Test print renders html behavior.
        JP: 印刷用HTMLに人数表記を除いたゲスト名と旅程が含まれることを検証するテスト。
        """
        self._login()
        tour_id = self._create_tour()["id"]
        self._select(tour_id)

        response = self.client.get(f"/api/arrival/{tour_id}/print")
        self.assertEqual(response.status_code, 200)
        self.assertIn("text/html", response.headers["Content-Type"])
        html = response.get_data(as_text=True)
        self.assertIn('<div class="guest-title">Sato Family</div>', html)
        self.assertIn("Cameron Fall Hiking", html)
        self.assertIn("Explorer Hotel", html)
        # 到着日・出発日はアクティビティがないため自由行動と表示される
        self.assertEqual(html.count('<div class="free-activity">*Free activity</div>'), 2)

    def test_monthly_plan(self):
        self._login()
        self._create_tour(start_date="2031-01-05", agent="JTB", arrival="2031-01-05|10:00|AC1", departure="2031-01-08|09:00|AC2")
        self._create_tour(start_date="2031-01-05", agent="", arrival="2031-01-05|12:00|AC3", departure="TBD")

        response = self.client.get("/api/monthly?month=2031-01")
        self.assertEqual(response.status_code, 200)
        plan = response.get_json()
        self.assertEqual(len(plan["days"]), 31)
        fifth = plan["days"][4]
        self.assertEqual(fifth["date"], "2031-01-05")
        self.assertEqual(fifth["hiking"], 2)
        self.assertEqual(fifth["arrival"], 2)
        self.assertEqual(plan["days"][7]["departure"], 1)
        self.assertEqual(plan["agents"], [{"agent": "JTB", "total": 1}, {"agent": "Others", "total": 1}])

        self.assertEqual(self.client.get("/api/monthly?month=2031-13").status_code, 400)

    def test_staff_management_is_admin_only(self):
        """
        EN: Test staff management is admin only behavior.
        JP: スタッフ管理が管理者のみ可能で、重複メールが409になることを検証するテスト。
        """
        self._login()
        response = self.client.post(
            "/api/staff",
            json={"email": "admin@example.com", "password": "x", "name": "Dup", "role": "staff"},
            headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 409)

        response = self.client.post(
            "/api/staff",
            json={"email": "guide@example.com", "password": "guide-pass", "name": "Mika Tanaka", "role": "chief"},
            headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/staff",
            json={"email": "guide@example.com", "password": "guide-pass", "name": "Mika Tanaka", "role": "staff"},
            headers=ORIGIN,
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.get_json()["data"]["name"], "Mika Tanaka")

        self._login("guide@example.com", "guide-pass")
        self.assertEqual(self.client.get("/api/staff").status_code, 403)

    def test_security_headers_and_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.get_json(), {"status": "ok"})
        self.assertEqual(response.headers.get("X-Frame-Options"), "DENY")


if __name__ == "__main__":
    unittest.main()
