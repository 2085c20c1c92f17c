import unittest

from lifecycle_fixtures import (
    DEFAULT_PASSWORD,
    activity_count,
    build_session_factory,
    seed_active_borrowing,
    seed_asset,
    seed_employee,
)

from models.asset_models import Gender, Role
from schemas.employees import EmployeeUpdateDto
from services import employee_service
from services.errors import AlreadyExistsError, ConflictError, NotFoundError, UnauthorizedError
from services.session_service import create_session, get_session, remove_session
from services.validation import Actor, coerce_enum


class EmployeeTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = build_session_factory()
        self.db = self.Session()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_register_normalizes_email_and_defaults_role(self):
        employee = seed_employee(self.db, "Katherine Johnson", email="Katherine@Example.COM", role=None)

        self.assertEqual(employee.Email, "katherine@example.com")
        self.assertEqual(employee.Role, Role.USER.value)
        self.assertNotEqual(employee.PasswordHash, DEFAULT_PASSWORD)
        self.assertNotIn("passwordHash", employee_service.serialize_employee(employee))
        self.assertEqual(activity_count(self.db, "RegisterEmployee"), 1)

    def test_duplicate_email_is_rejected(self):
        seed_employee(self.db, "Katherine Johnson", email="kj@example.com")
        with self.assertRaises(AlreadyExistsError):
            seed_employee(self.db, "Kathy Johnson", email="KJ@example.com")

    def test_authenticate(self):
        seed_employee(self.db, "Katherine Johnson", email="kj@example.com")

        employee = employee_service.authenticate(self.db, "KJ@example.com", DEFAULT_PASSWORD)
        self.assertEqual(employee.Name, "Katherine Johnson")
        with self.assertRaises(UnauthorizedError):
            employee_service.authenticate(self.db, "kj@example.com", "wrong-password")
        with self.assertRaises(UnauthorizedError):
            employee_service.authenticate(self.db, "nobody@example.com", DEFAULT_PASSWORD)

    def test_update_keeps_password_unless_given(self):
        employee = seed_employee(self.db, "Katherine Johnson", email="kj@example.com")
        payload = EmployeeUpdateDto(
            name="Katherine G. Johnson",
            gender=Gender.FEMALE,
            contactNumber="0987654321",
            address="NASA Langley",
            email="kj@example.com",
        )
        updated = employee_service.update_employee(self.db, employee.EmployeeID, payload)

        self.assertEqual(updated.Name, "Katherine G. Johnson")
        self.assertEqual(updated.Role, Role.USER.value)
        employee_service.authenticate(self.db, "kj@example.com", DEFAULT_PASSWORD)

        payload.password = "new-secret"
        employee_service.update_employee(self.db, employee.EmployeeID, payload)
        employee_service.authenticate(self.db, "kj@example.com", "new-secret")

    def test_referenced_employee_cannot_be_deleted(self):
        employee = seed_employee(self.db, "Katherine Johnson")
        seed_active_borrowing(self.db, employee, seed_asset(self.db))

        with self.assertRaises(ConflictError):
            employee_service.delete_employee(self.db, employee.EmployeeID)

        idle = seed_employee(self.db, "Dorothy Vaughan")
        employee_service.delete_employee(self.db, idle.EmployeeID)
        with self.assertRaises(NotFoundError):
            employee_service.get_employee(self.db, idle.EmployeeID)


class SessionTokenTests(unittest.TestCase):
    def test_round_trip_and_revocation(self):
        token = create_session({"employeeID": 7, "role": "USER"})

        self.assertEqual(get_session(token)["employeeID"], 7)
        remove_session(token)
        self.assertIsNone(get_session(token))

    def test_tampered_or_garbage_tokens_are_rejected(self):
        token = create_session({"employeeID": 7, "role": "USER"})
        body, signature = token.split(".", 1)
        forged_body = create_session({"employeeID": 1, "role": "ADMIN"}).split(".", 1)[0]

        self.assertIsNone(get_session(f"{forged_body}.{signature}"))
        self.assertIsNone(get_session("not-a-token"))
        self.assertIsNone(get_session(None))
        self.assertIsNotNone(get_session(f"{body}.{signature}"))


class ValidationTests(unittest.TestCase):
    def test_coerce_enum_accepts_names_and_values(self):
        self.assertEqual(coerce_enum(Gender, "female", "gender"), Gender.FEMALE)
        self.assertEqual(coerce_enum(Role, Role.ADMIN, "role"), Role.ADMIN)
        self.assertTrue(Actor(employee_id=1, role=coerce_enum(Role, "admin", "role")).is_admin)


if __name__ == "__main__":
    unittest.main()
