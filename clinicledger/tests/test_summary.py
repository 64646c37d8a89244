import unittest

from clinicledger.ledger.errors import ValidationError
from clinicledger.ledger.models import PeriodSummary
from clinicledger.ledger.summary import month_bounds
from clinicledger.ledger.system import ClinicLedgerSystem


class SummaryAggregatorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.system = ClinicLedgerSystem()

    def tearDown(self) -> None:
        self.system.close()

    def mark(self, patient_id: str, date: str, fee: float, paid: float, method: str = "cash", practitioner_id: str = "D1"):
        return self.system.mark_visit(
            patient_id=patient_id,
            date=date,
            fee=fee,
            paid=paid,
            payment_method=method,
            practitioner_id=practitioner_id,
        )

    def test_empty_period_has_zero_collection_rate(self) -> None:
        summary = self.system.get_period_summary(patient_id="P1", month="2025-01")
        self.assertEqual(summary, PeriodSummary())
        self.assertEqual(summary.collection_rate, 0)
        self.assertEqual(summary.total_fee, 0)

    def test_end_to_end_mark_summarise_unmark(self) -> None:
        self.mark("P1", "2025-01-10", 300, 300)
        summary = self.system.get_period_summary(patient_id="P1", month="2025-01")
        self.assertEqual(
            summary.to_dict(),
            {
                "visits": 1,
                "total_fee": 300,
                "total_paid": 300,
                "total_due": 0,
                "paid_count": 1,
                "unpaid_count": 0,
                "collection_rate": 100.0,
            },
        )
        self.system.unmark_visit(patient_id="P1", date="2025-01-10")
        self.assertEqual(
            self.system.get_period_summary(patient_id="P1", month="2025-01"), PeriodSummary()
        )

    def test_visited_only_days_count_as_unpaid_visits(self) -> None:
        self.system.add_visited_day(patient_id="P1", date="2025-01-03")
        self.mark("P1", "2025-01-04", 300, 300)
        summary = self.system.get_period_summary(patient_id="P1")
        self.assertEqual(summary.visits, 2)
        self.assertEqual(summary.paid_count, 1)
        self.assertEqual(summary.unpaid_count, 1)
        self.assertEqual(summary.total_fee, 300)

    def test_payment_without_visit_flag_is_active(self) -> None:
        self.system.add_payment(
            patient_id="P1",
            date="2025-01-04",
            fee=200,
            paid=50,
            payment_method="upi",
            practitioner_id="D1",
        )
        summary = self.system.get_period_summary(patient_id="P1")
        self.assertEqual(summary.visits, 1)
        self.assertEqual(summary.total_due, 150)
        self.assertEqual(summary.collection_rate, 25.0)

    def test_month_and_range_filters(self) -> None:
        self.mark("P1", "2025-01-10", 300, 150)
        self.mark("P1", "2025-01-31", 300, 300)
        self.mark("P1", "2025-02-01", 500, 0)
        january = self.system.get_period_summary(patient_id="P1", month=(2025, 1))
        self.assertEqual(january.visits, 2)
        self.assertEqual(january.total_paid, 450)
        self.assertEqual(january.collection_rate, 75.0)
        ranged = self.system.get_period_summary(patient_id="P1", start="2025-01-31", end="2025-02-01")
        self.assertEqual(ranged.visits, 2)
        self.assertEqual(ranged.total_fee, 800)
        self.assertEqual(self.system.get_period_summary(patient_id="P1").visits, 3)

    def test_practitioner_and_patient_filters(self) -> None:
        self.mark("P1", "2025-01-10", 300, 300, practitioner_id="D1")
        self.mark("P2", "2025-01-10", 400, 100, practitioner_id="D2")
        self.mark("P2", "2025-01-11", 400, 400, practitioner_id="D1")
        self.system.add_visited_day(patient_id="P3", date="2025-01-10")
        everyone = self.system.get_period_summary()
        self.assertEqual(everyone.visits, 4)
        d1 = self.system.get_period_summary(practitioner_id="D1")
        self.assertEqual((d1.visits, d1.total_fee, d1.paid_count), (2, 700, 2))
        p2_with_d2 = self.system.get_period_summary(patient_id="P2", practitioner_id="D2")
        self.assertEqual((p2_with_d2.visits, p2_with_d2.total_due), (1, 300))

    def test_overpayment_counts_as_paid(self) -> None:
        self.mark("P1", "2025-01-10", 300, 400)
        summary = self.system.get_period_summary(patient_id="P1")
        self.assertEqual(summary.total_due, -100)
        self.assertEqual(summary.paid_count, 1)

    def test_invalid_periods(self) -> None:
        with self.assertRaises(ValidationError):
            self.system.get_period_summary(month="2025-13")
        with self.assertRaises(ValidationError):
            self.system.get_period_summary(month="January")
        with self.assertRaises(ValidationError):
            self.system.get_period_summary(start="2025-02-01", end="2025-01-01")

    def test_range_outside_month_is_empty(self) -> None:
        self.mark("P1", "2025-01-10", 300, 300)
        self.mark("P1", "2025-03-05", 300, 300)
        summary = self.system.get_period_summary(patient_id="P1", start="2025-03-01", month="2025-01")
        self.assertEqual(summary, PeriodSummary())
        self.assertEqual(self.system.daily_revenue(end="2024-12-31", month="2025-01"), [])
        counts = self.system.schedule_summary(practitioner_id="D1", start="2025-03-01", month="2025-01")
        self.assertEqual(counts["total"], 0)
        with self.assertRaises(ValidationError):
            self.system.get_period_summary(start="2025-03-01", end="2025-02-01", month="2025-01")

    def test_month_bounds(self) -> None:
        start, end = month_bounds("2024-02")
        self.assertEqual((start.day, end.day), (1, 29))

    def test_payment_breakdown_and_daily_revenue(self) -> None:
        self.mark("P1", "2025-01-10", 300, 300, method="cash")
        self.mark("P2", "2025-01-10", 300, 200, method="upi")
        self.mark("P1", "2025-01-12", 300, 100, method="upi")
        self.system.add_visited_day(patient_id="P3", date="2025-01-12")
        breakdown = self.system.payment_breakdown(month="2025-01")
        self.assertEqual(
            breakdown,
            {"cash": 300, "upi": 300, "card": 0, "bank": 0, "total_collected": 600},
        )
        revenue = self.system.daily_revenue(month="2025-01")
        self.assertEqual(
            revenue,
            [
                {"date": "2025-01-10", "revenue": 500, "visits": 2},
                {"date": "2025-01-12", "revenue": 100, "visits": 2},
            ],
        )

    def test_schedule_summary(self) -> None:
        first = self.system.assign_slot(
            practitioner_id="D1", date="2025-01-10", time_slot="09:00", patient_id="P1"
        )
        self.system.assign_slot(
            practitioner_id="D1", date="2025-01-11", time_slot="09:00", patient_id="P1"
        )
        self.system.assign_slot(
            practitioner_id="D1", date="2025-01-11", time_slot="10:00", patient_id="P2"
        )
        self.system.complete_slot(assignment_id=first.assignment_id)
        counts = self.system.schedule_summary(practitioner_id="D1", month="2025-01")
        self.assertEqual(
            counts, {"scheduled": 2, "completed": 1, "total": 3, "patients": 2}
        )
        with self.assertRaises(ValidationError):
            self.system.schedule_summary(practitioner_id="D1")


if __name__ == "__main__":
    unittest.main()
