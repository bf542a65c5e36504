from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from vibecredits.core.database import Base
from vibecredits.models.credit_transaction import CreditTransaction
from vibecredits.models.user import User
from vibecredits.services.balance import available_for_user
from vibecredits.services.credits import activate_subscription, consume_credits, get_or_create_user, grant_purchased_credits
from vibecredits.services.renewal import renew_monthly_credits
from vibecredits.services.transactions import list_credit_transactions


def main() -> None:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user_id = "user-1"
        get_or_create_user(db, user_id, email="user-1@example.com")
        started = datetime(2026, 1, 31, 10, tzinfo=timezone.utc)
        activate_subscription(db, user_id, plan="STARTER", billing_cycle="MONTHLY", now=started)
        bal = available_for_user(db.query(User).filter(User.id == user_id).first())
        assert bal == 500, bal

        grant_purchased_credits(db, user_id, credits=300, reference_id="checkout-1")
        grant_purchased_credits(db, user_id, credits=300, reference_id="checkout-1")
        consume_credits(db, user_id, amount=650, description="Generate 13 photos")
        db.expire_all()
        user = db.query(User).filter(User.id == user_id).first()
        assert (user.credits_used, user.credits_balance) == (500, 150), (user.credits_used, user.credits_balance)

        summary = renew_monthly_credits(db, now=datetime(2026, 2, 28, 3, tzinfo=timezone.utc))
        assert summary.renewed_user_ids == [user_id], summary.as_dict()
        again = renew_monthly_credits(db, now=datetime(2026, 2, 28, 4, tzinfo=timezone.utc))
        assert again.total_renewed == 0, again.as_dict()

        db.expire_all()
        bal2 = available_for_user(db.query(User).filter(User.id == user_id).first())
        assert bal2 == 650, bal2

        page = list_credit_transactions(db, user_id)
        assert [t.source for t in page.items] == ["RENEWAL", "CONSUMPTION", "PURCHASE", "SUBSCRIPTION_GRANT"]
        assert page.items[0].balance_after == bal2

        rows = db.query(CreditTransaction).filter(CreditTransaction.user_id == user_id).all()
        assert any(r.amount < 0 for r in rows)
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
