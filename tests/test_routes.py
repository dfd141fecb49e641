import app
from conftest import login, make_user


def _offline_user(monkeypatch, user_id="nick"):
    record = {
        "id": user_id,
        "email": f"{user_id}@example.com",
        "full_name": user_id.title(),
        "password_hash": app.generate_password_hash("secret123"),
    }
    monkeypatch.setattr(app, "find_user_record", lambda uid: record if uid == user_id else None)
    return record


def test_healthz():
    with app.app.test_client() as client:
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.get_json()["ok"] is True


def test_database_status_online(online):
    with app.app.test_client() as client:
        body = client.get("/api/system/database").get_json()
        assert body == {"state": "available", "available": True, "configured": True}

        forced = client.get("/api/system/database?force=1").get_json()
        assert forced["available"] is True


def test_database_status_offline(offline):
    with app.app.test_client() as client:
        body = client.get("/api/system/database").get_json()
        assert body["state"] == "unavailable"
        assert body["configured"] is False


def test_api_requires_login(online):
    with app.app.test_client() as client:
        response = client.get("/api/projects")
        assert response.status_code == 401
        assert response.get_json()["error"] == "Authentication required"


def test_signup_then_me(online):
    with app.app.test_client() as client:
        response = client.post(
            "/api/auth/signup",
            json={"email": "Amy@Example.com", "password": "secret123", "full_name": "Amy", "country": "Kenya"},
        )
        assert response.status_code == 201
        created = response.get_json()
        assert created["email"] == "amy@example.com"
        assert created["country"] == "Kenya"
        assert "password_hash" not in created

        me = client.get("/api/me").get_json()
        assert me["id"] == created["id"]
        assert me["unread_notifications"] == 0

        again = client.post("/api/auth/signup", json={"email": "amy@example.com", "password": "secret123"})
        assert again.status_code == 409


def test_signup_needs_database(offline):
    with app.app.test_client() as client:
        response = client.post("/api/auth/signup", json={"email": "amy@example.com", "password": "secret123"})
        assert response.status_code == 503


def test_login_checks_password(online, store):
    make_user(store, email="nick@example.com", password="password123")

    with app.app.test_client() as client:
        bad = client.post("/api/auth/login", json={"email": "nick@example.com", "password": "nope"})
        assert bad.status_code == 401

        good = client.post("/api/auth/login", json={"email": "nick@example.com", "password": "password123"})
        assert good.status_code == 200
        assert good.get_json()["full_name"] == "Nick"


def test_project_and_task_flow_online(online, store):
    nick = make_user(store)

    with app.app.test_client() as client:
        login(client, nick)
        project = client.post(
            "/api/projects", json={"title": "Kilimo", "tech_stack": "python, flask, Python"}
        ).get_json()
        assert project["is_temporary"] is False
        assert project["tech_stack"] == ["python", "flask"]

        task = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "Schema"}).get_json()
        assert task["status"] == "todo"

        done = client.patch(f"/api/tasks/{task['id']}", json={"status": "completed"}).get_json()
        assert done["status"] == "completed"
        assert done["completed_at"]

        listing = client.get(f"/api/projects/{project['id']}/tasks").get_json()
        assert listing["stats"]["completed"] == 1
        assert listing["stats"]["completion_rate"] == 100

        bad = client.patch(f"/api/tasks/{task['id']}", json={"status": "someday"})
        assert bad.status_code == 400


def test_invalid_project_date_is_rejected_not_stored_locally(online, store, local):
    nick = make_user(store)

    with app.app.test_client() as client:
        login(client, nick)
        response = client.post("/api/projects", json={"title": "X", "start_date": "not-a-date"})
        assert response.status_code == 400
        assert response.get_json()["error"] == "Invalid start_date"

        project = client.post("/api/projects", json={"title": "Y"}).get_json()
        bad = client.patch(f"/api/projects/{project['id']}", json={"end_date": "31/12/2025"})
        assert bad.status_code == 400

    assert local.all("projects") == []
    assert store.count("projects") == 1


def test_temp_projects_listed_before_remote_ones(online, store, local):
    nick = make_user(store)
    remote = store.insert("projects", {"creator_id": nick["id"], "title": "Synced"})[0]
    temp = local.add("projects", {"creator_id": nick["id"], "title": "Drafted offline"})
    local.add("projects", {"creator_id": "someone-else", "title": "Not mine"})

    with app.app.test_client() as client:
        login(client, nick)
        listing = client.get("/api/projects").get_json()

    assert [p["id"] for p in listing["projects"]] == [temp["id"], remote["id"]]
    assert listing["database"] == "available"


def test_list_limits_are_clamped(online, store):
    nick = make_user(store)
    for i in range(3):
        store.insert("posts", {"author_id": nick["id"], "title": f"p{i}", "content": "x"})
    store.insert(
        "notifications",
        [{"user_id": nick["id"], "type": "system", "title": f"n{i}"} for i in range(55)],
    )

    with app.app.test_client() as client:
        login(client, nick)
        assert len(client.get("/api/posts?limit=-1").get_json()["posts"]) == 1
        assert len(client.get("/api/notifications?limit=0").get_json()["notifications"]) == 1
        assert len(client.get("/api/notifications?limit=500").get_json()["notifications"]) == 50


def test_project_falls_back_to_local_store(offline, monkeypatch):
    nick = _offline_user(monkeypatch)

    with app.app.test_client() as client:
        login(client, nick)
        response = client.post("/api/projects", json={"title": "Offline idea"})
        assert response.status_code == 201
        project = response.get_json()
        assert project["is_temporary"] is True
        assert project["id"].startswith("temp-")

        listing = client.get("/api/projects").get_json()
        assert [p["id"] for p in listing["projects"]] == [project["id"]]
        assert listing["database"] == "unavailable"

        task = client.post(f"/api/projects/{project['id']}/tasks", json={"title": "Sketch"}).get_json()
        assert task["is_temporary"] is True

        assert client.delete(f"/api/projects/{project['id']}").status_code == 200
        assert app.local_store.all("tasks") == []


def test_other_users_project_is_forbidden(online, store):
    nick = make_user(store)
    amy = make_user(store, email="amy@example.com", full_name="Amy")
    project = store.insert("projects", {"creator_id": amy["id"], "title": "Private"})[0]

    with app.app.test_client() as client:
        login(client, nick)
        assert client.get(f"/api/projects/{project['id']}").status_code == 404
        assert client.patch(f"/api/projects/{project['id']}", json={"title": "x"}).status_code == 403


def test_post_like_and_comment_notify_author(online, store):
    bob = make_user(store, email="bob@example.com", full_name="Bob")
    amy = make_user(store, email="amy@example.com", full_name="Amy")
    post = store.insert("posts", {"author_id": bob["id"], "title": "Hello Nairobi", "content": "First post"})[0]

    with app.app.test_client() as client:
        login(client, amy)
        liked = client.post(f"/api/posts/{post['id']}/like").get_json()
        assert liked == {"success": True, "liked": True, "likes": 1}

        comment = client.post(f"/api/posts/{post['id']}/comments", json={"content": "Great work"})
        assert comment.status_code == 201

        unliked = client.post(f"/api/posts/{post['id']}/like").get_json()
        assert unliked["liked"] is False

    kinds = sorted(n["type"] for n in store.select("notifications", {"user_id": bob["id"]}))
    assert kinds == ["post_comment", "post_like"]
    like = store.first("notifications", {"user_id": bob["id"], "type": "post_like"})
    assert like["title"] == "Amy liked your post"
    assert like["related_data"]["sender_id"] == amy["id"]


def test_liking_own_post_does_not_notify(online, store):
    bob = make_user(store, email="bob@example.com", full_name="Bob")
    post = store.insert("posts", {"author_id": bob["id"], "title": "Mine", "content": "x"})[0]

    with app.app.test_client() as client:
        login(client, bob)
        client.post(f"/api/posts/{post['id']}/like")

    assert store.count("notifications") == 0


def test_message_notifies_recipient(online, store):
    bob = make_user(store, email="bob@example.com", full_name="Bob")
    amy = make_user(store, email="amy@example.com", full_name="Amy")

    with app.app.test_client() as client:
        login(client, amy)
        conversation = client.post("/api/conversations", json={"user_id": bob["id"]}).get_json()
        sent = client.post(f"/api/conversations/{conversation['id']}/messages", json={"content": "Habari Bob"})
        assert sent.status_code == 201

        messages = client.get(f"/api/conversations/{conversation['id']}/messages").get_json()["messages"]
        assert [m["content"] for m in messages] == ["Habari Bob"]

    note = store.first("notifications", {"user_id": bob["id"]})
    assert note["type"] == "new_message"
    assert note["related_id"] == conversation["id"]
    assert note["related_data"]["message_preview"] == "Habari Bob"


def test_collaboration_request_notifies_owner(online, store):
    bob = make_user(store, email="bob@example.com", full_name="Bob")
    amy = make_user(store, email="amy@example.com", full_name="Amy")
    project = store.insert("projects", {"creator_id": bob["id"], "title": "Kilimo App", "is_public": True})[0]

    with app.app.test_client() as client:
        login(client, amy)
        response = client.post(f"/api/projects/{project['id']}/collaborate", json={})
        assert response.get_json() == {"ok": True}

    note = store.first("notifications", {"user_id": bob["id"]})
    assert note["content"] == 'Amy wants to collaborate on "Kilimo App"'


def test_notification_endpoints_respect_ownership(online, store):
    bob = make_user(store, email="bob@example.com", full_name="Bob")
    amy = make_user(store, email="amy@example.com", full_name="Amy")
    note = store.insert("notifications", {"user_id": bob["id"], "type": "system", "title": "Welcome"})[0]

    with app.app.test_client() as client:
        login(client, amy)
        assert client.post(f"/api/notifications/{note['id']}/read").status_code == 404
        assert client.delete(f"/api/notifications/{note['id']}").status_code == 404

    with app.app.test_client() as client:
        login(client, bob)
        assert client.get("/api/notifications/unread-count").get_json() == {"unread": 1}
        assert client.post(f"/api/notifications/{note['id']}/read").get_json() == {"ok": True}

        listing = client.get("/api/notifications").get_json()
        assert listing["unread"] == 0
        assert listing["notifications"][0]["is_read"] is True

        assert client.delete(f"/api/notifications/{note['id']}").get_json() == {"ok": True}
        assert client.get("/api/notifications").get_json()["notifications"] == []


def test_offline_notifications_reach_subscribers(offline, monkeypatch):
    nick = _offline_user(monkeypatch)
    received = []
    offline.subscribe(received.append)

    with app.app.test_client() as client:
        login(client, nick)
        assert client.post("/api/users/amy/connect", json={}).get_json() == {"ok": True}

    assert received[0].user_id == "amy"
    assert received[0].content == "Nick wants to connect with you"


def test_demo_mode_blocks_mutations(online, store, monkeypatch):
    nick = make_user(store)
    monkeypatch.setattr(app, "DEMO", True)

    with app.app.test_client() as client:
        login(client, nick)
        response = client.post("/api/projects", json={"title": "Blocked"})
        assert response.status_code == 403
        assert client.get("/api/projects").status_code == 200

    assert store.count("projects") == 0
