import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from clinicledger.ledger.errors import ConflictError, PatientAlreadyScheduledError, SlotOccupiedError
from clinicledger.ledger.locks import KeyedLocks
from clinicledger.ledger.system import ClinicLedgerSystem


class KeyedLocksTestCase(unittest.TestCase):
    def test_locks_are_dropped_when_idle(self) -> None:
        locks = KeyedLocks()
        with locks.hold("a"):
            with locks.hold("b"):
                self.assertEqual(len(locks), 2)
        self.assertEqual(len(locks), 0)

    def test_unrelated_keys_do_not_block(self) -> None:
        locks = KeyedLocks()
        entered = threading.Event()

        def other_key() -> None:
            with locks.hold("b"):
                entered.set()

        with locks.hold("a"):
            worker = threading.Thread(target=other_key)
            worker.start()
            self.assertTrue(entered.wait(timeout=5))
            worker.join(timeout=5)


class ConcurrentMutationTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.system = ClinicLedgerSystem()

    def tearDown(self) -> None:
        self.system.close()

    def test_concurrent_marks_on_one_key_leave_one_whole_record(self) -> None:
        fees = [100 + i for i in range(20)]

        def mark(fee: int):
            return self.system.mark_visit(
                patient_id="P1",
                date="2025-01-10",
                fee=fee,
                paid=fee,
                payment_method="cash",
                practitioner_id=f"D{fee}",
            )

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(mark, fees))

        visits = self.system.list_visits(patient_id="P1")
        self.assertEqual(len(visits), 1)
        record = visits[0]
        self.assertIn(record.fee, fees)
        # Fields of one write never mix with another's.
        self.assertEqual(record.paid, record.fee)
        self.assertEqual(record.practitioner_id, f"D{int(record.fee)}")

    def test_concurrent_bookings_of_one_slot(self) -> None:
        def book(patient: str):
            try:
                return self.system.assign_slot(
                    practitioner_id="D1", date="2025-01-10", time_slot="09:00", patient_id=patient
                )
            except SlotOccupiedError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(book, [f"P{i}" for i in range(16)]))

        booked = [o for o in outcomes if not isinstance(o, ConflictError)]
        self.assertEqual(len(booked), 1)
        self.assertEqual(len(self.system.daily_schedule(practitioner_id="D1", date="2025-01-10")), 1)

    def test_concurrent_bookings_of_one_patient(self) -> None:
        def book(slot: str):
            try:
                return self.system.assign_slot(
                    practitioner_id="D1", date="2025-01-10", time_slot=slot, patient_id="P1"
                )
            except PatientAlreadyScheduledError as exc:
                return exc

        slots = [f"{hour:02d}:00" for hour in range(8, 20)]
        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(book, slots))

        booked = [o for o in outcomes if not isinstance(o, ConflictError)]
        self.assertEqual(len(booked), 1)

    def test_bulk_mark_runs_alongside_other_callers(self) -> None:
        dates = [f"2025-03-{day:02d}" for day in range(1, 29)]
        with ThreadPoolExecutor(max_workers=4) as pool:
            bulk = pool.submit(
                self.system.bulk_mark_visits,
                patient_id="P1",
                dates=dates,
                fee=300,
                paid=300,
                payment_method="cash",
                practitioner_id="D1",
            )
            singles = [
                pool.submit(
                    self.system.mark_visit,
                    patient_id="P2",
                    date=date,
                    fee=200,
                    paid=0,
                    payment_method="upi",
                    practitioner_id="D2",
                )
                for date in dates
            ]
            result = bulk.result(timeout=30)
            for future in singles:
                future.result(timeout=30)

        self.assertTrue(result.ok)
        self.assertEqual(len(self.system.list_visits(patient_id="P1")), 28)
        self.assertEqual(len(self.system.list_visits(patient_id="P2")), 28)


if __name__ == "__main__":
    unittest.main()
