from datetime import timedelta

from kaapav.models.customer import Customer
from kaapav.services.customers import customer_language, resegment_customers, set_language, touch_customer
from kaapav.utils.clock import utcnow
from tests.fixtures_data import CUSTOMER_PHONE, build_session_factory


def _customer(db, phone, **fields):
    now = utcnow()
    values = {"name": "Customer", "segment": "new", "last_seen": now, "created_at": now - timedelta(days=90)}
    values.update(fields)
    customer = Customer(phone=phone, **values)
    db.add(customer)
    db.commit()
    return customer


def test_segments_follow_vip_inactive_regular_new_precedence():
    db = build_session_factory()()
    now = utcnow()
    long_ago = now - timedelta(days=60)
    _customer(db, "919800000001", total_spent=9000, order_count=5, last_seen=long_ago)
    _customer(db, "919800000002", total_spent=1000, order_count=3, last_seen=long_ago, segment="regular")
    _customer(db, "919800000003", total_spent=1000, order_count=3)
    _customer(db, "919800000004", created_at=now - timedelta(days=2))

    result = resegment_customers(db, now=now)

    segments = {c.phone: c.segment for c in db.query(Customer).all()}
    assert segments == {
        "919800000001": "vip",
        "919800000002": "inactive",
        "919800000003": "regular",
        "919800000004": "new",
    }
    assert result["inactive"] == 1
    assert result["changed"] == 3


def test_deleted_customers_are_not_resegmented():
    db = build_session_factory()()
    _customer(db, "919800000005", total_spent=9000, is_deleted=True)

    resegment_customers(db)

    assert db.query(Customer).one().segment == "new"


def test_customer_language_defaults_to_english():
    db = build_session_factory()()

    assert customer_language(db, CUSTOMER_PHONE) == "en"
    touch_customer(db, CUSTOMER_PHONE, "Priya Sharma")
    set_language(db, CUSTOMER_PHONE, "kn")
    assert customer_language(db, CUSTOMER_PHONE) == "kn"
