import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vibecredits.core.database import Base
from vibecredits.core.errors import InvalidCreditOperation, UserNotFoundError
from vibecredits.models.credit_transaction import CreditTransaction
from vibecredits.models.user import User
from vibecredits.services.credits import consume_credits, grant_purchased_credits
from vibecredits.services.transactions import (
    list_credit_transactions,
    normalize_pagination,
    recalculate_balance_snapshots,
    record_credit_transaction,
)


class TestTransactionRecorder(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.db = self.SessionLocal()
        for user_id in ("user-a", "user-b"):
            self.db.add(
                User(
                    id=user_id,
                    email=f"{user_id}@example.com",
                    credits_limit=100,
                    credits_used=40,
                    credits_balance=15,
                )
            )
        self.db.commit()

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(bind=self.engine)
        self.engine.dispose()

    def _record(self, user_id: str, amount: int = 1, description: str = "bonus"):
        return record_credit_transaction(
            self.db,
            user_id=user_id,
            type_="CREDIT",
            source="ADMIN_ADJUSTMENT",
            amount=amount,
            description=description,
        )

    def test_balance_after_uses_current_counters(self):
        entry = self._record("user-a", amount=0)
        self.assertEqual(entry.balance_after, 75)

    def test_rejects_mismatched_sign_and_unknown_enums(self):
        with self.assertRaises(InvalidCreditOperation):
            record_credit_transaction(self.db, user_id="user-a", type_="DEBIT", source="CONSUMPTION", amount=5)
        with self.assertRaises(InvalidCreditOperation):
            record_credit_transaction(self.db, user_id="user-a", type_="CREDIT", source="GIFT", amount=5)
        with self.assertRaises(InvalidCreditOperation):
            record_credit_transaction(self.db, user_id="user-a", type_="REFUND", source="PURCHASE", amount=5)

    def test_unknown_user(self):
        with self.assertRaises(UserNotFoundError):
            self._record("ghost")

    def test_second_page_of_twenty_five(self):
        for i in range(25):
            self._record("user-a", description=f"entry {i}")

        page = list_credit_transactions(self.db, "user-a", page=2, limit=20)
        self.assertEqual(len(page.items), 5)
        self.assertEqual(page.total_records, 25)
        self.assertEqual(page.total_pages, 2)
        self.assertFalse(page.has_next_page)
        self.assertTrue(page.has_prev_page)
        self.assertEqual(page.items[-1].description, "entry 0")

    def test_most_recent_first(self):
        for i in range(3):
            self._record("user-a", description=f"entry {i}")
        page = list_credit_transactions(self.db, "user-a")
        self.assertEqual([t.description for t in page.items], ["entry 2", "entry 1", "entry 0"])
        self.assertFalse(page.has_prev_page)
        self.assertFalse(page.has_next_page)

    def test_history_is_scoped_to_one_user(self):
        for _ in range(3):
            self._record("user-a")
        self._record("user-b")

        page = list_credit_transactions(self.db, "user-b", page=1, limit=50)
        self.assertEqual(page.total_records, 1)
        self.assertTrue(all(t.user_id == "user-b" for t in page.items))

    def test_empty_history(self):
        page = list_credit_transactions(self.db, "user-a")
        self.assertEqual(page.items, [])
        self.assertEqual(page.total_pages, 0)
        self.assertEqual(page.pagination()["has_next_page"], False)

    def test_pagination_is_clamped(self):
        self.assertEqual(normalize_pagination(None, None), (1, 20))
        self.assertEqual(normalize_pagination(0, 0), (1, 20))
        self.assertEqual(normalize_pagination(-3, 5000), (1, 100))
        self.assertEqual(normalize_pagination(4, -2), (4, 1))

    def test_recalculate_rewrites_snapshots(self):
        grant_purchased_credits(self.db, "user-b", credits=100, reference_id="order-1")
        consume_credits(self.db, "user-b", amount=80, description="Portrait pack")
        grant_purchased_credits(self.db, "user-b", credits=20, reference_id="order-2")

        self.db.query(CreditTransaction).filter(CreditTransaction.user_id == "user-b").update(
            {CreditTransaction.balance_after: 0}
        )
        self.db.commit()

        result = recalculate_balance_snapshots(self.db, user_id="user-b")
        self.assertEqual(result, {"processed_users": 1, "processed_transactions": 3})

        page = list_credit_transactions(self.db, "user-b")
        self.assertEqual([t.balance_after for t in page.items], [115, 95, 175])


if __name__ == "__main__":
    unittest.main()
