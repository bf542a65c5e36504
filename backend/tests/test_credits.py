import unittest
from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vibecredits.core.database import Base
from vibecredits.core.errors import InsufficientCreditsError, InvalidCreditOperation, UserNotFoundError
from vibecredits.models.credit_transaction import CreditTransaction
from vibecredits.models.user import User
from vibecredits.services.credits import (
    activate_subscription,
    adjust_credits,
    consume_credits,
    credits_limit_for_plan,
    get_or_create_user,
    grant_purchased_credits,
    reconcile_user_credits,
    set_subscription_status,
)


class TestPlanCatalogue(unittest.TestCase):
    def test_monthly_allowances(self):
        self.assertEqual(credits_limit_for_plan("STARTER", "MONTHLY"), 500)
        self.assertEqual(credits_limit_for_plan("premium", "MONTHLY"), 1200)
        self.assertEqual(credits_limit_for_plan("GOLD", "MONTHLY"), 2500)

    def test_yearly_is_twelve_months_up_front(self):
        self.assertEqual(credits_limit_for_plan("STARTER", "YEARLY"), 6000)
        self.assertEqual(credits_limit_for_plan("GOLD", "yearly"), 30000)

    def test_unknown_plan(self):
        with self.assertRaises(InvalidCreditOperation):
            credits_limit_for_plan("PLATINUM", "MONTHLY")


class TestCreditOperations(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.db = self.SessionLocal()
        self.db.add(
            User(
                id="user-1",
                email="user-1@example.com",
                plan="STARTER",
                billing_cycle="MONTHLY",
                subscription_status="ACTIVE",
                credits_limit=100,
                credits_used=90,
                credits_balance=50,
            )
        )
        self.db.commit()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(bind=self.engine)
        self.engine.dispose()

    def counters(self, user_id: str = "user-1") -> tuple[int, int, int]:
        self.db.expire_all()
        user = self.db.query(User).filter(User.id == user_id).first()
        return (user.credits_limit, user.credits_used, user.credits_balance)

    def entries(self, user_id: str = "user-1") -> list[CreditTransaction]:
        return (
            self.db.query(CreditTransaction)
            .filter(CreditTransaction.user_id == user_id)
            .order_by(CreditTransaction.id.asc())
            .all()
        )

    def test_get_or_create_user_provisions_once(self):
        created = get_or_create_user(self.db, "fresh", email="fresh@example.com", role="admin")
        self.assertEqual((created.email, created.role), ("fresh@example.com", "admin"))
        self.assertEqual(self.counters("fresh"), (0, 0, 0))

        again = get_or_create_user(self.db, "fresh", email="other@example.com")
        self.assertEqual(again.id, "fresh")
        self.assertEqual(again.email, "fresh@example.com")
        self.assertEqual(self.db.query(User).filter(User.id == "fresh").count(), 1)

    def test_consume_spends_plan_credits_first(self):
        entry = consume_credits(self.db, "user-1", amount=30, description="Generate 4 photos")
        self.assertEqual(self.counters(), (100, 100, 30))
        self.assertEqual(entry.type, "DEBIT")
        self.assertEqual(entry.source, "CONSUMPTION")
        self.assertEqual(entry.amount, -30)
        self.assertEqual(entry.balance_after, 30)

    def test_consume_within_plan_leaves_purchased_untouched(self):
        consume_credits(self.db, "user-1", amount=10, description="Upscale")
        self.assertEqual(self.counters(), (100, 100, 50))

    def test_insufficient_credits_has_no_side_effect(self):
        with self.assertRaises(InsufficientCreditsError) as ctx:
            consume_credits(self.db, "user-1", amount=61, description="Train model")
        self.assertEqual(ctx.exception.required, 61)
        self.assertEqual(ctx.exception.available, 60)
        self.assertEqual(self.counters(), (100, 90, 50))
        self.assertEqual(self.entries(), [])

    def add_over_consumed_user(self) -> None:
        self.db.add(
            User(
                id="over",
                email="over@example.com",
                plan="STARTER",
                billing_cycle="MONTHLY",
                subscription_status="ACTIVE",
                credits_limit=10,
                credits_used=50,
                credits_balance=100,
            )
        )
        self.db.commit()

    def test_over_consumed_plan_is_netted_against_purchased(self):
        self.add_over_consumed_user()

        with self.assertRaises(InsufficientCreditsError) as ctx:
            consume_credits(self.db, "over", amount=100, description="Train model")
        self.assertEqual(ctx.exception.available, 60)
        self.assertEqual(self.counters("over"), (10, 50, 100))
        self.assertEqual(self.entries("over"), [])

        entry = consume_credits(self.db, "over", amount=60, description="Generate 8 photos")
        self.assertEqual(self.counters("over"), (10, 50, 40))
        self.assertEqual(entry.amount, -60)
        self.assertEqual(entry.balance_after, 0)

    def test_consume_rejects_non_positive_and_unknown_user(self):
        with self.assertRaises(InvalidCreditOperation):
            consume_credits(self.db, "user-1", amount=0, description="noop")
        with self.assertRaises(UserNotFoundError):
            consume_credits(self.db, "nobody", amount=1, description="noop")

    def test_purchase_is_idempotent_per_reference(self):
        first = grant_purchased_credits(self.db, "user-1", credits=350, reference_id="pay_123")
        second = grant_purchased_credits(self.db, "user-1", credits=350, reference_id="pay_123")

        self.assertEqual(first.id, second.id)
        self.assertEqual(self.counters(), (100, 90, 400))
        self.assertEqual(len(self.entries()), 1)
        self.assertEqual(first.balance_after, 410)

    def test_purchase_requires_reference(self):
        with self.assertRaises(InvalidCreditOperation):
            grant_purchased_credits(self.db, "user-1", credits=10, reference_id="")

    def test_activate_monthly_subscription(self):
        self.db.add(User(id="new", email="new@example.com", credits_limit=0, credits_used=0, credits_balance=20))
        self.db.commit()
        now = datetime(2026, 3, 9, 12, tzinfo=timezone.utc)

        entry = activate_subscription(self.db, "new", plan="premium", billing_cycle="monthly", now=now)
        self.assertEqual(self.counters("new"), (1200, 0, 20))
        self.assertEqual(entry.source, "SUBSCRIPTION_GRANT")
        self.assertEqual(entry.amount, 1200)
        self.assertEqual(entry.balance_after, 1220)

        user = self.db.query(User).filter(User.id == "new").first()
        self.assertEqual(user.plan, "PREMIUM")
        self.assertEqual(user.billing_cycle, "MONTHLY")
        self.assertEqual(user.subscription_status, "ACTIVE")
        self.assertEqual(user.subscription_started_at.replace(tzinfo=None), now.replace(tzinfo=None))

    def test_activate_yearly_subscription(self):
        activate_subscription(self.db, "user-1", plan="GOLD", billing_cycle="YEARLY")
        self.assertEqual(self.counters(), (30000, 0, 50))

    def test_status_change_keeps_counters(self):
        set_subscription_status(self.db, "user-1", "past_due")
        self.assertEqual(self.counters(), (100, 90, 50))
        with self.assertRaises(InvalidCreditOperation):
            set_subscription_status(self.db, "user-1", "PAUSED")

    def test_adjust_plan_pool(self):
        result = adjust_credits(
            self.db,
            "user-1",
            pool="PLAN",
            operation="ADD",
            amount=200,
            reason="Compensation for failed batch",
            actor={"id": "admin-1", "email": "ops@example.com"},
        )
        self.assertEqual(result["applied"], 90)
        self.assertEqual(result["after"]["credits_used"], 0)
        self.assertEqual(self.counters(), (100, 0, 50))

        adjust_credits(self.db, "user-1", "PLAN", "REMOVE", 500, "Abuse clawback per ticket")
        self.assertEqual(self.counters(), (100, 100, 50))

        kinds = [(e.type, e.amount) for e in self.entries()]
        self.assertEqual(kinds, [("CREDIT", 90), ("DEBIT", -100)])

    def test_plan_remove_on_over_consumed_user_is_a_no_op(self):
        self.add_over_consumed_user()

        result = adjust_credits(self.db, "over", "PLAN", "REMOVE", 5, "Support correction request")
        self.assertEqual(result["applied"], 0)
        self.assertEqual(self.counters("over"), (10, 50, 100))
        self.assertEqual([(e.type, e.amount) for e in self.entries("over")], [("DEBIT", 0)])

    def test_adjust_purchased_pool_floors_at_zero(self):
        result = adjust_credits(self.db, "user-1", "purchased", "remove", 80, "Chargeback on order 991")
        self.assertEqual(result["applied"], -50)
        self.assertEqual(self.counters(), (100, 90, 0))

    def test_adjust_validation(self):
        with self.assertRaises(InvalidCreditOperation):
            adjust_credits(self.db, "user-1", "PLAN", "ADD", 10, "too short")
        with self.assertRaises(InvalidCreditOperation):
            adjust_credits(self.db, "user-1", "BONUS", "ADD", 10, "Marketing campaign bonus")
        with self.assertRaises(InvalidCreditOperation):
            adjust_credits(self.db, "user-1", "PLAN", "ADD", 0, "Marketing campaign bonus")
        with self.assertRaises(UserNotFoundError):
            adjust_credits(self.db, "ghost", "PLAN", "ADD", 10, "Marketing campaign bonus")

    def test_reconcile_reports_drift(self):
        grant_purchased_credits(self.db, "user-1", credits=10, reference_id="pay_9")
        self.db.query(User).filter(User.id == "user-1").update({User.credits_balance: 100})
        self.db.commit()

        result = reconcile_user_credits(self.db, "user-1")
        self.assertEqual(result["available"], 110)
        self.assertEqual(result["ledger_balance_after"], 70)
        self.assertEqual(result["drift"], 40)


if __name__ == "__main__":
    unittest.main()
