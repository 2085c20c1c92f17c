import unittest

from lifecycle_fixtures import (
    activity_count,
    build_session_factory,
    seed_active_borrowing,
    seed_asset,
    seed_employee,
)

from db.store import compare_and_set, save, unit_of_work
from models.asset_models import Asset, AssetBorrowing, AssetStatus, BorrowingStatus
from services import borrowing_service, catalog_service
from services.errors import BadInputError, ConflictError, NotFoundError


class BorrowingWorkflowTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.Session = build_session_factory()
        self.db = self.Session()
        self.ada = seed_employee(self.db, "Ada Lovelace")
        self.alan = seed_employee(self.db, "Alan Turing")
        self.laptop = seed_asset(self.db)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _asset_status(self):
        return catalog_service.get_asset(self.db, self.laptop.AssetID).Status

    def test_request_creates_pending_record_and_activity_row(self):
        before = activity_count(self.db)
        borrowing = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)

        self.assertEqual(borrowing.Status, BorrowingStatus.PENDING.value)
        self.assertIsNotNone(borrowing.BorrowedAt)
        self.assertIsNone(borrowing.ReturnedAt)
        self.assertEqual(self._asset_status(), AssetStatus.AVAILABLE.value)
        self.assertEqual(activity_count(self.db), before + 1)
        self.assertEqual(activity_count(self.db, "RequestBorrow"), 1)

    def test_duplicate_pending_request_is_rejected_without_side_effects(self):
        borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        before = activity_count(self.db)

        with self.assertRaises(ConflictError):
            borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)

        self.assertEqual(len(borrowing_service.list_pending_borrowings(self.db)), 1)
        self.assertEqual(activity_count(self.db), before)

    def test_other_employee_may_queue_for_same_available_asset(self):
        borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        borrowing_service.request_borrow(self.db, self.alan.EmployeeID, self.laptop.AssetID)

        self.assertEqual(len(borrowing_service.list_pending_borrowings(self.db)), 2)

    def test_request_for_borrowed_asset_is_rejected(self):
        seed_active_borrowing(self.db, self.ada, self.laptop)

        with self.assertRaises(ConflictError) as ctx:
            borrowing_service.request_borrow(self.db, self.alan.EmployeeID, self.laptop.AssetID)

        self.assertEqual(ctx.exception.current, AssetStatus.BORROWED.value)
        self.assertEqual(ctx.exception.expected, AssetStatus.AVAILABLE.value)

    def test_request_for_unknown_employee_or_asset_is_not_found(self):
        with self.assertRaises(NotFoundError):
            borrowing_service.request_borrow(self.db, 9999, self.laptop.AssetID)
        with self.assertRaises(NotFoundError):
            borrowing_service.request_borrow(self.db, self.ada.EmployeeID, 9999)

    def test_approve_activates_borrowing_and_marks_asset_borrowed(self):
        borrowing = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        approved = borrowing_service.process_borrowing_action(self.db, borrowing.BorrowingID, "approve")

        self.assertEqual(approved.Status, BorrowingStatus.ACTIVE.value)
        self.assertEqual(self._asset_status(), AssetStatus.BORROWED.value)
        self.assertEqual(activity_count(self.db, "ApproveBorrow"), 1)
        self.assertEqual(borrowing_service.find_status_mismatches(self.db), [])

    def test_second_approval_for_same_asset_conflicts(self):
        first = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        second = borrowing_service.request_borrow(self.db, self.alan.EmployeeID, self.laptop.AssetID)
        borrowing_service.process_borrowing_action(self.db, first.BorrowingID, "APPROVE")

        with self.assertRaises(ConflictError):
            borrowing_service.process_borrowing_action(self.db, second.BorrowingID, "APPROVE")

        self.assertEqual(borrowing_service.get_borrowing(self.db, second.BorrowingID).Status, "PENDING")
        self.assertEqual(len(borrowing_service.list_active_borrowings(self.db)), 1)
        self.assertEqual(activity_count(self.db, "ApproveBorrow"), 1)
        self.assertEqual(borrowing_service.find_status_mismatches(self.db), [])

        # The losing request can still be rejected.
        rejected = borrowing_service.process_borrowing_action(self.db, second.BorrowingID, "REJECT")
        self.assertEqual(rejected.Status, BorrowingStatus.REJECTED.value)

    def test_stale_session_cannot_approve_after_concurrent_approval(self):
        first = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        second = borrowing_service.request_borrow(self.db, self.alan.EmployeeID, self.laptop.AssetID)

        session_a = self.Session()
        session_b = self.Session()
        try:
            # Session B has already seen the asset as Available.
            stale = catalog_service.get_asset(session_b, self.laptop.AssetID)
            self.assertEqual(stale.Status, AssetStatus.AVAILABLE.value)

            borrowing_service.process_borrowing_action(session_a, first.BorrowingID, "APPROVE")
            with self.assertRaises(ConflictError):
                borrowing_service.process_borrowing_action(session_b, second.BorrowingID, "APPROVE")
        finally:
            session_a.close()
            session_b.close()

        self.db.expire_all()
        self.assertEqual(len(borrowing_service.list_active_borrowings(self.db)), 1)
        self.assertEqual(borrowing_service.find_status_mismatches(self.db), [])

    def test_reject_is_terminal(self):
        borrowing = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        borrowing_service.process_borrowing_action(self.db, borrowing.BorrowingID, "REJECT")

        with self.assertRaises(ConflictError) as ctx:
            borrowing_service.process_borrowing_action(self.db, borrowing.BorrowingID, "APPROVE")

        self.assertEqual(ctx.exception.current, BorrowingStatus.REJECTED.value)
        self.assertEqual(ctx.exception.expected, [BorrowingStatus.PENDING.value])
        self.assertEqual(self._asset_status(), AssetStatus.AVAILABLE.value)

    def test_approving_active_borrowing_conflicts(self):
        borrowing = seed_active_borrowing(self.db, self.ada, self.laptop)

        with self.assertRaises(ConflictError):
            borrowing_service.process_borrowing_action(self.db, borrowing.BorrowingID, "APPROVE")
        with self.assertRaises(ConflictError):
            borrowing_service.process_borrowing_action(self.db, borrowing.BorrowingID, "REJECT")

    def test_unknown_action_and_unknown_borrowing(self):
        borrowing = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)

        with self.assertRaises(BadInputError):
            borrowing_service.process_borrowing_action(self.db, borrowing.BorrowingID, "MAYBE")
        with self.assertRaises(NotFoundError):
            borrowing_service.process_borrowing_action(self.db, 4242, "APPROVE")

    def test_return_frees_asset_and_allows_new_request(self):
        borrowing = seed_active_borrowing(self.db, self.ada, self.laptop)
        returned = borrowing_service.return_asset(self.db, borrowing.BorrowingID)

        self.assertEqual(returned.Status, BorrowingStatus.RETURNED.value)
        self.assertIsNotNone(returned.ReturnedAt)
        self.assertEqual(self._asset_status(), AssetStatus.AVAILABLE.value)
        self.assertEqual(activity_count(self.db, "ReturnAsset"), 1)

        again = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        self.assertEqual(again.Status, BorrowingStatus.PENDING.value)
        self.assertEqual(borrowing_service.find_status_mismatches(self.db), [])

    def test_return_requires_active_borrowing(self):
        pending = borrowing_service.request_borrow(self.db, self.ada.EmployeeID, self.laptop.AssetID)
        with self.assertRaises(ConflictError):
            borrowing_service.return_asset(self.db, pending.BorrowingID)

        borrowing_service.process_borrowing_action(self.db, pending.BorrowingID, "APPROVE")
        borrowing_service.return_asset(self.db, pending.BorrowingID)
        before = activity_count(self.db)
        with self.assertRaises(ConflictError):
            borrowing_service.return_asset(self.db, pending.BorrowingID)
        self.assertEqual(activity_count(self.db), before)

    def test_listing_by_status_and_employee(self):
        active = seed_active_borrowing(self.db, self.ada, self.laptop)
        monitor = seed_asset(self.db, "Dell Monitor")
        rejected = borrowing_service.request_borrow(self.db, self.alan.EmployeeID, monitor.AssetID)
        borrowing_service.process_borrowing_action(self.db, rejected.BorrowingID, "REJECT")

        self.assertEqual(
            [row.BorrowingID for row in borrowing_service.list_active_borrowings(self.db)],
            [active.BorrowingID],
        )
        self.assertEqual(
            [row.BorrowingID for row in borrowing_service.list_rejected_borrowings(self.db)],
            [rejected.BorrowingID],
        )
        self.assertEqual(borrowing_service.list_returned_borrowings(self.db), [])
        self.assertEqual(len(borrowing_service.list_borrowings_by_employee(self.db, self.alan.EmployeeID)), 1)
        with self.assertRaises(NotFoundError):
            borrowing_service.list_borrowings_by_employee(self.db, 777)
        with self.assertRaises(BadInputError):
            borrowing_service.list_borrowings_by_status(self.db, "LOST")

        payload = borrowing_service.serialize_borrowing(active)
        self.assertEqual(payload["employee"]["name"], "Ada Lovelace")
        self.assertEqual(payload["asset"]["assetName"], "ThinkPad X1")

    def test_second_active_row_for_asset_is_rejected_by_store(self):
        seed_active_borrowing(self.db, self.ada, self.laptop)

        with self.assertRaises(ConflictError):
            with unit_of_work(self.db):
                save(
                    self.db,
                    AssetBorrowing(
                        EmployeeID=self.alan.EmployeeID,
                        AssetID=self.laptop.AssetID,
                        Status=BorrowingStatus.ACTIVE.value,
                    ),
                )

        self.assertEqual(len(borrowing_service.list_active_borrowings(self.db)), 1)

    def test_compare_and_set_reports_stale_expectation(self):
        with unit_of_work(self.db):
            changed = compare_and_set(
                self.db,
                Asset,
                self.laptop.AssetID,
                expected={"Status": AssetStatus.BORROWED.value},
                values={"Status": AssetStatus.AVAILABLE.value},
            )
        self.assertFalse(changed)

        with unit_of_work(self.db):
            changed = compare_and_set(
                self.db,
                Asset,
                self.laptop.AssetID,
                expected={"Status": AssetStatus.AVAILABLE.value},
                values={"Status": AssetStatus.BORROWED.value},
            )
        self.assertTrue(changed)
        # The in-session object is synchronized without a refresh.
        self.assertEqual(self.laptop.Status, AssetStatus.BORROWED.value)
        self.assertEqual(self._asset_status(), AssetStatus.BORROWED.value)

    def test_status_mismatch_is_reported(self):
        with unit_of_work(self.db):
            compare_and_set(
                self.db,
                Asset,
                self.laptop.AssetID,
                expected={"Status": AssetStatus.AVAILABLE.value},
                values={"Status": AssetStatus.BORROWED.value},
            )

        self.assertEqual(
            borrowing_service.find_status_mismatches(self.db),
            [{"assetID": self.laptop.AssetID, "status": AssetStatus.BORROWED.value, "activeBorrowings": 0}],
        )


if __name__ == "__main__":
    unittest.main()
