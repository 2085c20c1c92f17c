import unittest

from fastapi.testclient import TestClient

from lifecycle_fixtures import DEFAULT_PASSWORD, build_session_factory, seed_employee

import AssetLifecycle as app_module
from models.asset_models import Role


ASSET_BODY = {
    "assetName": "ThinkPad X1",
    "categoryName": "Electronics",
    "assetModel": "X1-G11",
    "manufacturingDate": "2023-01-15",
    "expiryDate": "2028-01-15",
    "assetValue": 1850,
    "description": "Standard issue laptop",
}


class ApiFlowTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = build_session_factory()
        with self.Session() as db:
            self.admin = seed_employee(db, "Admin Person", email="admin@example.com", role=Role.ADMIN)
            self.user = seed_employee(db, "Regular User", email="user@example.com")
            self.peer = seed_employee(db, "Peer User", email="peer@example.com")

        def _override_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app_module.app.dependency_overrides[app_module.get_asset_db] = _override_db
        self.client = TestClient(app_module.app)

    def tearDown(self):
        app_module.app.dependency_overrides.clear()
        self.engine.dispose()

    def _login(self, email):
        response = self.client.post("/api/auth/login", json={"email": email, "password": DEFAULT_PASSWORD})
        self.assertEqual(response.status_code, 200, response.text)
        return {"X-Session-Token": response.json()["sessionToken"]}

    def _create_asset(self, admin_headers):
        response = self.client.post("/api/assets", json=ASSET_BODY, headers=admin_headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()["assetID"]

    def test_healthcheck(self):
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})

    def test_login_logout_revokes_session_token(self):
        headers = self._login("user@example.com")

        me_before = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_before.status_code, 200)
        self.assertEqual(me_before.json()["user"]["employeeID"], self.user.EmployeeID)

        logout = self.client.post("/api/auth/logout", headers=headers)
        self.assertEqual(logout.status_code, 200)

        me_after = self.client.get("/api/auth/me", headers=headers)
        self.assertEqual(me_after.status_code, 401)

    def test_login_persists_with_cookie_session(self):
        login = self.client.post("/api/auth/login", json={"email": "USER@example.com", "password": DEFAULT_PASSWORD})
        self.assertEqual(login.status_code, 200)
        self.assertIn("asset_lifecycle_session=", login.headers.get("set-cookie", ""))

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual((me.json().get("user") or {}).get("role"), "USER")

    def test_bad_credentials_and_missing_session(self):
        login = self.client.post("/api/auth/login", json={"email": "user@example.com", "password": "nope-nope"})
        self.assertEqual(login.status_code, 401)

        self.assertEqual(self.client.get("/api/assets").status_code, 401)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)

    def test_registering_admin_requires_admin_session(self):
        body = {
            "name": "New Admin",
            "gender": "Other",
            "contactNumber": "555-0100",
            "address": "HQ",
            "email": "new-admin@example.com",
            "password": "secret-pass",
            "role": "ADMIN",
        }
        self.assertEqual(self.client.post("/api/auth/register", json=body).status_code, 401)

        user_headers = self._login("user@example.com")
        self.assertEqual(self.client.post("/api/auth/register", json=body, headers=user_headers).status_code, 403)

        admin_headers = self._login("admin@example.com")
        created = self.client.post("/api/auth/register", json=body, headers=admin_headers)
        self.assertEqual(created.status_code, 201, created.text)
        self.assertEqual(created.json()["role"], "ADMIN")

    def test_user_cannot_approve_borrowings(self):
        admin_headers = self._login("admin@example.com")
        user_headers = self._login("user@example.com")
        asset_id = self._create_asset(admin_headers)

        created = self.client.post("/api/borrowings", json={"assetID": asset_id}, headers=user_headers)
        self.assertEqual(created.status_code, 201, created.text)
        borrowing_id = created.json()["borrowingID"]

        denied = self.client.post(
            f"/api/borrowings/{borrowing_id}/action", json={"action": "APPROVE"}, headers=user_headers
        )
        self.assertEqual(denied.status_code, 403)

        invalid = self.client.post(
            f"/api/borrowings/{borrowing_id}/action", json={"action": "MAYBE"}, headers=admin_headers
        )
        self.assertEqual(invalid.status_code, 422)

        approved = self.client.post(
            f"/api/borrowings/{borrowing_id}/action", json={"action": "APPROVE"}, headers=admin_headers
        )
        self.assertEqual(approved.status_code, 200, approved.text)
        self.assertEqual(approved.json()["status"], "ACTIVE")
        self.assertEqual(approved.json()["asset"]["status"], "Borrowed")

    def test_user_requests_are_filed_under_their_own_id(self):
        admin_headers = self._login("admin@example.com")
        user_headers = self._login("user@example.com")
        asset_id = self._create_asset(admin_headers)

        created = self.client.post(
            "/api/borrowings",
            json={"employeeID": self.peer.EmployeeID, "assetID": asset_id},
            headers=user_headers,
        )
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["employeeID"], self.user.EmployeeID)

        others = self.client.get(f"/api/borrowings/employee/{self.peer.EmployeeID}", headers=user_headers)
        self.assertEqual(others.status_code, 403)
        mine = self.client.get(f"/api/borrowings/employee/{self.user.EmployeeID}", headers=user_headers)
        self.assertEqual(len(mine.json()), 1)

    def test_errors_render_kind_and_state(self):
        admin_headers = self._login("admin@example.com")
        user_headers = self._login("user@example.com")

        missing = self.client.get("/api/assets/9999", headers=user_headers)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["kind"], "NotFound")

        asset_id = self._create_asset(admin_headers)
        self.client.post("/api/borrowings", json={"assetID": asset_id}, headers=user_headers)
        duplicate = self.client.post("/api/borrowings", json={"assetID": asset_id}, headers=user_headers)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["kind"], "Conflict")
        self.assertEqual(duplicate.json()["current"], "PENDING")

        no_category = self.client.get("/api/assets/category/Unknown", headers=user_headers)
        self.assertEqual(no_category.status_code, 404)

    def test_full_borrow_service_and_return_cycle(self):
        admin_headers = self._login("admin@example.com")
        user_headers = self._login("user@example.com")
        asset_id = self._create_asset(admin_headers)

        borrowing_id = self.client.post(
            "/api/borrowings", json={"assetID": asset_id}, headers=user_headers
        ).json()["borrowingID"]
        self.client.post(f"/api/borrowings/{borrowing_id}/action", json={"action": "APPROVE"}, headers=admin_headers)

        assigned = self.client.get(f"/api/assets/assigned/{self.user.EmployeeID}", headers=user_headers)
        self.assertEqual([row["assetID"] for row in assigned.json()], [asset_id])

        service_request = self.client.post(
            "/api/service-requests",
            json={"assetID": asset_id, "issueType": "HARDWARE", "description": "Keyboard sticks"},
            headers=user_headers,
        )
        self.assertEqual(service_request.status_code, 201, service_request.text)
        request_id = service_request.json()["serviceRequestID"]
        self.assertEqual(service_request.json()["status"], "Pending")

        forbidden = self.client.put(
            f"/api/service-requests/{request_id}/status", json={"status": "Transit"}, headers=user_headers
        )
        self.assertEqual(forbidden.status_code, 403)
        moved = self.client.put(
            f"/api/service-requests/{request_id}/status", json={"status": "Transit"}, headers=admin_headers
        )
        self.assertEqual(moved.json()["status"], "Transit")
        in_transit = self.client.get("/api/service-requests/status/Transit", headers=admin_headers)
        self.assertEqual([row["serviceRequestID"] for row in in_transit.json()], [request_id])

        returned = self.client.post(f"/api/borrowings/{borrowing_id}/return", headers=user_headers)
        self.assertEqual(returned.status_code, 200, returned.text)
        self.assertEqual(returned.json()["status"], "RETURNED")
        self.assertEqual(self.client.get(f"/api/assets/{asset_id}", headers=user_headers).json()["status"], "Available")

        late = self.client.post(
            "/api/service-requests",
            json={"assetID": asset_id, "issueType": "OTHER", "description": "Forgot charger"},
            headers=user_headers,
        )
        self.assertEqual(late.status_code, 409)

        returned_list = self.client.get("/api/borrowings/returned", headers=admin_headers)
        self.assertEqual([row["borrowingID"] for row in returned_list.json()], [borrowing_id])

        activity = self.client.get("/api/activity", params={"entityType": "AssetBorrowing"}, headers=admin_headers)
        self.assertEqual(
            [row["action"] for row in activity.json()],
            ["ReturnAsset", "ApproveBorrow", "RequestBorrow"],
        )
        self.assertEqual(self.client.get("/api/activity", headers=user_headers).status_code, 403)

    def test_audit_decision_is_owner_only(self):
        admin_headers = self._login("admin@example.com")
        user_headers = self._login("user@example.com")
        peer_headers = self._login("peer@example.com")
        asset_id = self._create_asset(admin_headers)

        sent = self.client.post(
            "/api/audits", json={"employeeID": self.user.EmployeeID, "assetID": asset_id}, headers=admin_headers
        )
        self.assertEqual(sent.status_code, 201, sent.text)
        audit_id = sent.json()["auditID"]

        peer = self.client.post(f"/api/audits/{audit_id}/decision", json={"action": "BOGUS"}, headers=peer_headers)
        self.assertEqual(peer.status_code, 403)
        self.assertEqual(peer.json()["kind"], "Unauthorized")

        bogus = self.client.post(f"/api/audits/{audit_id}/decision", json={"action": "BOGUS"}, headers=user_headers)
        self.assertEqual(bogus.status_code, 400)
        self.assertEqual(bogus.json()["kind"], "BadInput")

        verified = self.client.post(f"/api/audits/{audit_id}/decision", json={"action": "VERIFY"}, headers=user_headers)
        self.assertEqual(verified.status_code, 200)
        self.assertEqual(verified.json()["status"], "VERIFIED")

        again = self.client.post(f"/api/audits/{audit_id}/decision", json={"action": "REJECT"}, headers=user_headers)
        self.assertEqual(again.status_code, 409)

        mine = self.client.get(f"/api/audits/employee/{self.user.EmployeeID}", headers=user_headers)
        self.assertEqual([row["status"] for row in mine.json()], ["VERIFIED"])
        self.assertEqual(self.client.get("/api/audits", headers=user_headers).status_code, 403)

    def test_admin_manages_categories(self):
        admin_headers = self._login("admin@example.com")
        user_headers = self._login("user@example.com")

        denied = self.client.post("/api/categories", json={"categoryName": "Furniture"}, headers=user_headers)
        self.assertEqual(denied.status_code, 403)

        created = self.client.post("/api/categories", json={"categoryName": "Furniture"}, headers=admin_headers)
        self.assertEqual(created.status_code, 201)
        duplicate = self.client.post("/api/categories", json={"categoryName": "Furniture"}, headers=admin_headers)
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["kind"], "AlreadyExists")

        by_name = self.client.get("/api/categories/by-name/Furniture", headers=user_headers)
        self.assertEqual(by_name.json()["categoryID"], created.json()["categoryID"])
        deleted = self.client.delete(f"/api/categories/{created.json()['categoryID']}", headers=admin_headers)
        self.assertEqual(deleted.status_code, 200)


if __name__ == "__main__":
    unittest.main()
