from concurrent.futures import ThreadPoolExecutor

import pytest

from vibestack.data import subscribers


@pytest.fixture
def author(make_user):
    return make_user("author_1", "author@example.com", "maya")


def test_normalize_email_trims_and_lowercases():
    assert subscribers.normalize_email("  Reader@Example.COM ") == "reader@example.com"
    assert subscribers.normalize_email("   ") is None
    assert subscribers.normalize_email(None) is None


def test_upsert_creates_single_active_row(author):
    assert subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1")
    row = subscribers.get_subscriber(author["id"], "reader@example.com")
    assert row["status"] == "active"
    assert row["stripe_subscription_id"] == "sub_1"
    assert row["unsubscribe_token"]
    assert subscribers.count_rows(author["id"]) == 1


def test_repeated_upsert_is_idempotent(author):
    for _ in range(3):
        subscribers.upsert_active_subscription(author["id"], "Reader@Example.com ", "sub_1")
    assert subscribers.count_rows(author["id"]) == 1
    row = subscribers.get_subscriber(author["id"], "reader@example.com")
    assert row["status"] == "active"


def test_concurrent_upserts_converge_on_one_row(author):
    def call(i):
        return subscribers.upsert_active_subscription(
            author["id"], "reader@example.com", "sub_1", "reader_uid" if i % 2 else None
        )

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(call, range(10)))

    assert all(results)
    assert subscribers.count_rows(author["id"], "reader@example.com") == 1
    row = subscribers.get_subscriber(author["id"], "reader@example.com")
    assert row["status"] == "active"
    assert row["subscriber_user_id"] == "reader_uid"


def test_concurrent_upserts_with_different_subscriptions_keep_one_row(author):
    sent = {f"sub_{i}" for i in range(10)}

    def call(i):
        return subscribers.upsert_active_subscription(author["id"], "Reader@Example.com ", f"sub_{i}")

    with ThreadPoolExecutor(max_workers=10) as pool:
        results = list(pool.map(call, range(10)))

    assert all(results)
    assert subscribers.count_rows(author["id"]) == 1
    row = subscribers.get_subscriber(author["id"], "reader@example.com")
    assert row["status"] == "active"
    assert row["stripe_subscription_id"] in sent
    assert row["unsubscribe_token"]


def test_known_identity_never_regresses_to_null(author):
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1", "reader_uid")
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1", None)
    row = subscribers.get_subscriber(author["id"], "reader@example.com")
    assert row["subscriber_user_id"] == "reader_uid"


def test_identity_is_attached_later(author):
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1")
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1", "reader_uid")
    row = subscribers.get_subscriber(author["id"], "reader@example.com")
    assert row["subscriber_user_id"] == "reader_uid"


@pytest.mark.parametrize(
    "email,sub_id",
    [(None, "sub_1"), ("   ", "sub_1"), ("reader@example.com", None), ("reader@example.com", "")],
)
def test_missing_correlation_fields_write_nothing(author, email, sub_id):
    assert subscribers.upsert_active_subscription(author["id"], email, sub_id) is False
    assert subscribers.count_rows(author["id"]) == 0


def test_resubscribe_reactivates_same_row_with_latest_subscription(author):
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1")
    first = subscribers.get_subscriber(author["id"], "reader@example.com")
    subscribers.mark_unsubscribed_by_subscription("sub_1")
    assert subscribers.get_subscriber(author["id"], "reader@example.com")["status"] == "unsubscribed"

    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_2")
    again = subscribers.get_subscriber(author["id"], "reader@example.com")
    assert again["id"] == first["id"]
    assert again["status"] == "active"
    assert again["stripe_subscription_id"] == "sub_2"
    # Token survives so links in old emails keep working
    assert again["unsubscribe_token"] == first["unsubscribe_token"]
    assert subscribers.count_rows(author["id"]) == 1


def test_cancel_matches_by_subscription_id_and_is_repeatable(author, make_user):
    other = make_user("author_2", "other@example.com", "other")
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1")
    subscribers.upsert_active_subscription(other["id"], "reader@example.com", "sub_9")

    assert subscribers.mark_unsubscribed_by_subscription("sub_1") == 1
    assert subscribers.mark_unsubscribed_by_subscription("sub_1") == 0
    assert subscribers.mark_unsubscribed_by_subscription("sub_missing") == 0

    assert subscribers.get_subscriber(author["id"], "reader@example.com")["status"] == "unsubscribed"
    assert subscribers.get_subscriber(other["id"], "reader@example.com")["status"] == "active"


def test_past_due_only_moves_active_rows(author):
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1")
    assert subscribers.mark_past_due_by_subscription("sub_1") == 1
    assert subscribers.get_subscriber(author["id"], "reader@example.com")["status"] == "past_due"

    subscribers.mark_unsubscribed_by_subscription("sub_1")
    assert subscribers.mark_past_due_by_subscription("sub_1") == 0
    assert subscribers.get_subscriber(author["id"], "reader@example.com")["status"] == "unsubscribed"


def test_find_active_subscription_by_identity_or_email(author):
    subscribers.upsert_active_subscription(author["id"], "reader@example.com", "sub_1", "reader_uid")
    assert subscribers.find_active_subscription(author["id"], "reader_uid", None)
    assert subscribers.find_active_subscription(author["id"], None, "READER@example.com")
    assert subscribers.find_active_subscription(author["id"], "someone_else", "nobody@example.com") is None
    assert subscribers.find_active_subscription(author["id"], None, None) is None

    subscribers.mark_unsubscribed_by_subscription("sub_1")
    assert subscribers.find_active_subscription(author["id"], "reader_uid", None) is None


def test_list_mailable_skips_unsubscribed(author):
    subscribers.upsert_active_subscription(author["id"], "a@example.com", "sub_a")
    subscribers.upsert_active_subscription(author["id"], "b@example.com", "sub_b")
    subscribers.upsert_active_subscription(author["id"], "c@example.com", "sub_c")
    subscribers.mark_unsubscribed_by_subscription("sub_b")
    subscribers.mark_past_due_by_subscription("sub_c")

    emails = [r["email"] for r in subscribers.list_mailable(author["id"])]
    assert emails == ["a@example.com", "c@example.com"]
