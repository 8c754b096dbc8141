import pytest

from conftest import bearer
from vibestack.data import posts, subscribers

AUTHOR = bearer("author_1", "author@example.com", "maya")
READER = bearer("reader_uid", "reader@example.com", "reader")


@pytest.fixture
def author(make_user):
    return make_user("author_1", "author@example.com", "maya")


def test_create_draft_then_publish(client, author):
    resp = client.post("/api/posts", json={"title": "Hello World!", "content": "First"}, headers=AUTHOR)
    assert resp.status_code == 200
    draft = resp.json()
    assert draft["status"] == "draft"
    assert draft["publishedAt"] is None
    assert draft["slug"].startswith("hello-world-")
    assert len(draft["slug"]) == len("hello-world-") + 6

    resp = client.put(f"/api/posts/{draft['id']}", json={"status": "published"}, headers=AUTHOR)
    assert resp.status_code == 200
    assert resp.json()["status"] == "published"
    assert resp.json()["publishedAt"].endswith("Z")


def test_hobby_vibe_is_forced_neutral(client, author):
    resp = client.post("/api/posts", json={"title": "t", "content": "c", "vibe": "vaporwave"}, headers=AUTHOR)
    assert resp.json()["vibe"] == "neutral"


def test_pro_keeps_vibe(client, make_user):
    make_user("author_1", "author@example.com", "maya", plan="pro", sub_id="sub_pro")
    resp = client.post("/api/posts", json={"title": "t", "content": "c", "vibe": "vaporwave"}, headers=AUTHOR)
    assert resp.json()["vibe"] == "vaporwave"


def test_title_length_is_validated(client, author):
    resp = client.post("/api/posts", json={"title": "x" * 501, "content": "c"}, headers=AUTHOR)
    assert resp.status_code == 422


def test_only_owner_can_edit_or_delete(client, author, make_user):
    make_user("intruder", "intruder@example.com", "intruder")
    post = posts.create_post("author_1", "Mine", "body")
    intruder = bearer("intruder", "intruder@example.com", "intruder")
    assert client.put(f"/api/posts/{post['id']}", json={"title": "Hacked"}, headers=intruder).status_code == 404
    assert client.delete(f"/api/posts/{post['id']}", headers=intruder).status_code == 404
    assert client.delete(f"/api/posts/{post['id']}", headers=AUTHOR).json() == {"ok": True}
    assert posts.get_post(post["id"]) is None


def test_author_page_withholds_paid_content(client, author):
    posts.create_post("author_1", "Free", "free body", status="published")
    posts.create_post("author_1", "Paid", "paid body", status="published", is_paid=True)

    resp = client.get("/api/authors/maya")
    assert resp.status_code == 200
    body = resp.json()
    assert body["subscribed"] is False
    by_title = {p["title"]: p for p in body["posts"]}
    assert by_title["Free"]["content"] == "free body"
    assert by_title["Paid"]["content"] is None


def test_active_subscriber_sees_paid_content(client, author):
    posts.create_post("author_1", "Paid", "paid body", status="published", is_paid=True)
    subscribers.upsert_active_subscription("author_1", "reader@example.com", "sub_1")

    body = client.get("/api/authors/maya", headers=READER).json()
    assert body["subscribed"] is True
    assert body["posts"][0]["content"] == "paid body"


def test_past_due_subscriber_is_paywalled(client, author):
    posts.create_post("author_1", "Paid", "paid body", status="published", is_paid=True)
    subscribers.upsert_active_subscription("author_1", "reader@example.com", "sub_1")
    subscribers.mark_past_due_by_subscription("sub_1")

    body = client.get("/api/authors/maya", headers=READER).json()
    assert body["subscribed"] is False
    assert body["posts"][0]["content"] is None


def test_author_sees_own_paid_content(client, author):
    posts.create_post("author_1", "Paid", "paid body", status="published", is_paid=True)
    body = client.get("/api/authors/maya", headers=AUTHOR).json()
    assert body["subscribed"] is True
    assert body["posts"][0]["content"] == "paid body"


def test_unknown_author_is_404(client):
    assert client.get("/api/authors/nobody").status_code == 404


PAID_BODY = "Opening paragraph.\n\nSecond paragraph.\n\nThe part behind the paywall."


def test_post_page_shows_teaser_to_non_subscriber(client, author):
    post = posts.create_post("author_1", "Paid", PAID_BODY, status="published", is_paid=True)

    for headers in ({}, READER):
        resp = client.get(f"/api/authors/maya/posts/{post['slug']}", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["subscribed"] is False
        assert body["paywalled"] is True
        assert body["post"]["content"] == "Opening paragraph.\n\nSecond paragraph."


def test_post_page_shows_full_paid_post_to_subscriber(client, author):
    post = posts.create_post("author_1", "Paid", PAID_BODY, status="published", is_paid=True)
    subscribers.upsert_active_subscription("author_1", "reader@example.com", "sub_1")

    body = client.get(f"/api/authors/maya/posts/{post['slug']}", headers=READER).json()
    assert body["subscribed"] is True
    assert body["paywalled"] is False
    assert body["post"]["content"] == PAID_BODY
    assert body["unsubscribeToken"]


def test_post_page_free_post_is_open_to_everyone(client, author):
    post = posts.create_post("author_1", "Free", PAID_BODY, status="published")
    body = client.get(f"/api/authors/maya/posts/{post['slug']}").json()
    assert body["paywalled"] is False
    assert body["post"]["content"] == PAID_BODY


def test_post_page_author_sees_full_paid_post(client, author):
    post = posts.create_post("author_1", "Paid", PAID_BODY, status="published", is_paid=True)
    body = client.get(f"/api/authors/maya/posts/{post['slug']}", headers=AUTHOR).json()
    assert body["subscribed"] is True
    assert body["paywalled"] is False
    assert body["post"]["content"] == PAID_BODY


def test_post_page_unknown_or_unpublished_is_404(client, author, make_user):
    draft = posts.create_post("author_1", "Draft", "wip")
    make_user("other", "other@example.com", "other")
    elsewhere = posts.create_post("other", "Theirs", "body", status="published")

    assert client.get("/api/authors/maya/posts/no-such-slug").status_code == 404
    assert client.get(f"/api/authors/maya/posts/{draft['slug']}", headers=AUTHOR).status_code == 404
    assert client.get(f"/api/authors/maya/posts/{elsewhere['slug']}").status_code == 404
    assert client.get(f"/api/authors/nobody/posts/{elsewhere['slug']}").status_code == 404


def test_teaser_caps_length():
    assert posts.teaser("a" * 400) == "a" * 350 + "…"
    assert posts.teaser("") == ""


def test_email_taken_by_another_user_gets_placeholder(client, make_user):
    make_user("old_id", "same@example.com", "old")
    resp = client.get("/api/me", headers=bearer("new_id", "same@example.com", "newbie"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "new_id"
    assert body["email"] == "new_id@no-email.invalid"
    assert body["handle"] == "newbie"


def test_me_reports_plan_and_usage(client):
    resp = client.get("/api/me", headers=AUTHOR)
    assert resp.status_code == 200
    body = resp.json()
    assert body["userId"] == "author_1"
    assert body["handle"] == "maya"
    assert body["plan"] == "hobby"
    assert body["aiUsage"]["calls"] == 0
    assert body["aiUsage"]["limit"] == 15
    assert body["audience"] == {"active": 0, "pastDue": 0, "unsubscribed": 0, "cap": 500}


def test_me_reports_audience_against_plan_cap(client, author):
    subscribers.upsert_active_subscription("author_1", "reader@example.com", "sub_1")
    body = client.get("/api/me", headers=AUTHOR).json()
    assert body["audience"]["active"] == 1
    assert body["audience"]["cap"] == 500


def test_health_endpoints(client, monkeypatch):
    assert client.get("/healthz").json() == {"ok": True}
    assert client.get("/api/_db/health").json() == {"ok": True}
    monkeypatch.setenv("HEALTH_TOKEN", "s3cret")
    assert client.get("/api/_db/health").status_code == 401
    assert client.get("/api/_db/health", headers={"X-Health-Token": "s3cret"}).status_code == 200
