def _create_task(client, headers, assignee):
    response = client.post(
        "/api/tasks/",
        headers=headers,
        json={"title": "Quarterly report", "assignee_id": assignee.id},
    )
    assert response.status_code == 201
    return response.json()["id"]


def _move(client, headers, task_id, to_status, reason=None):
    return client.post(
        f"/api/tasks/{task_id}/transitions",
        headers=headers,
        json={"to_status": to_status, "reason": reason},
    )


def test_health(client):
    """Test health endpoints."""
    assert client.get("/health").json()["status"] == "up"
    assert client.get("/").status_code == 200


def test_request_id_is_echoed(client, employee, actor_headers):
    """Test the correlation id header round-trips."""
    headers = {**actor_headers(employee), "X-Request-ID": "req-123"}
    response = client.get("/api/notifications/", headers=headers)
    assert response.status_code == 200
    assert response.headers["X-Request-ID"] == "req-123"


def test_missing_actor_header(client):
    """Test requests without an acting employee are refused."""
    response = client.get("/api/notifications/")
    assert response.status_code == 401
    body = response.json()
    assert body["success"] is False
    assert body["errors"][0]["code"] == "AUTH_FAILED"


def test_unknown_actor(client):
    """Test an unknown employee id is refused."""
    response = client.get("/api/notifications/", headers={"X-Employee-Id": "404"})
    assert response.status_code == 401


def test_invalid_transition_envelope(client, manager, employee, actor_headers):
    """Test illegal transitions render as 409 INVALID_TRANSITION."""
    task_id = _create_task(client, actor_headers(manager), employee)
    response = _move(client, actor_headers(employee), task_id, "completed")

    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "errors": [{
            "msg": "Illegal status change new -> completed: not allowed as manual",
            "code": "INVALID_TRANSITION",
            "details": {"from_status": "new", "to_status": "completed"},
        }],
    }


def test_not_found_envelope(client, employee, actor_headers):
    """Test missing tasks render as 404 NOT_FOUND."""
    response = client.get("/api/tasks/9999", headers=actor_headers(employee))
    assert response.status_code == 404
    assert response.json()["errors"][0]["code"] == "NOT_FOUND"


def test_request_validation_envelope(client, manager, employee, actor_headers):
    """Test schema violations use the same envelope."""
    task_id = _create_task(client, actor_headers(manager), employee)
    response = client.patch(f"/api/tasks/{task_id}/progress", headers=actor_headers(employee), json={"progress": 150})

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["errors"][0]["field"] == "progress"


def test_approval_flow_over_http(client, manager, employee, actor_headers):
    """Test completion request, approval queue, decision and notifications."""
    as_manager, as_employee = actor_headers(manager), actor_headers(employee)
    task_id = _create_task(client, as_manager, employee)
    assert _move(client, as_employee, task_id, "in_progress").status_code == 200
    assert _move(client, as_employee, task_id, "pending_review").status_code == 200

    parked = _move(client, as_employee, task_id, "completed").json()
    assert parked["applied"] is False
    assert parked["task"]["status"] == "pending_review"
    request_id = parked["approval_request_id"]

    assert client.get("/api/approvals/", headers=as_employee).status_code == 403
    queue = client.get("/api/approvals/", headers=as_manager).json()
    assert [r["id"] for r in queue] == [request_id]

    decided = client.post(
        f"/api/approvals/{request_id}/decision",
        headers=as_manager,
        json={"decision": "approve", "comment": "ship it"},
    )
    assert decided.status_code == 200
    assert decided.json()["status"] == "approved"

    again = client.post(f"/api/approvals/{request_id}/decision", headers=as_manager, json={"decision": "reject"})
    assert again.status_code == 409
    assert again.json()["errors"][0]["code"] == "ALREADY_DECIDED"

    task = client.get(f"/api/tasks/{task_id}", headers=as_employee).json()
    assert task["status"] == "completed"
    assert task["progress"] == 100

    history = client.get(f"/api/tasks/{task_id}/history", headers=as_employee).json()
    assert [h["change_type"] for h in history][-1] == "approval"

    assert client.get("/api/notifications/unread-count", headers=as_employee).json() == {"unread": 1}
    assert client.post("/api/notifications/mark-all-read", headers=as_employee).json() == {"updated": 1}
    assert client.get("/api/notifications/", headers=as_employee, params={"unread_only": True}).json() == []


def test_duplicate_pending_request_over_http(client, manager, employee, actor_headers):
    """Test a second completion request is a 409."""
    as_employee = actor_headers(employee)
    task_id = _create_task(client, actor_headers(manager), employee)
    _move(client, as_employee, task_id, "in_progress")
    _move(client, as_employee, task_id, "pending_review")
    _move(client, as_employee, task_id, "completed")

    response = _move(client, as_employee, task_id, "completed")
    assert response.status_code == 409
    assert response.json()["errors"][0]["code"] == "DUPLICATE_PENDING_REQUEST"


def test_review_scoring_over_http(client, hr_admin, manager, employee, actor_headers):
    """Test criteria administration and review scoring endpoints."""
    as_hr, as_manager = actor_headers(hr_admin), actor_headers(manager)
    codes = []
    for code, weight in (("QUALITY", 40), ("DELIVERY", 60)):
        response = client.post(
            "/api/criteria/",
            headers=as_hr,
            json={"code": code, "name": code.title(), "weight": weight, "max_score": 10, "is_required": True},
        )
        assert response.status_code == 201
        codes.append(response.json()["id"])

    assert client.post(
        "/api/criteria/", headers=as_manager, json={"code": "X", "name": "X", "weight": 1, "max_score": 1}
    ).status_code == 403
    assert client.get("/api/criteria/weights", headers=as_manager).json()["is_balanced"] is True

    review = client.post(
        "/api/reviews/",
        headers=as_manager,
        json={"employee_id": employee.id, "period": "2024-H1", "start_date": "2024-01-01", "end_date": "2024-06-30"},
    ).json()

    out_of_range = client.post(
        f"/api/reviews/{review['id']}/scores",
        headers=as_manager,
        json={"scores": [{"criterion_id": codes[0], "score": 11}, {"criterion_id": codes[1], "score": 9}]},
    )
    assert out_of_range.status_code == 422
    assert out_of_range.json()["errors"][0]["code"] == "SCORE_OUT_OF_RANGE"

    scored = client.post(
        f"/api/reviews/{review['id']}/scores",
        headers=as_manager,
        json={"scores": [{"criterion_id": codes[0], "score": 8}, {"criterion_id": codes[1], "score": 9}]},
    ).json()
    assert scored["total_score"] == 86.0
    assert scored["grade"] == "B"
    assert len(scored["scores"]) == 2


def test_maintenance_endpoint_requires_hr(client, hr_admin, employee, actor_headers):
    """Test only HR can trigger the sweep."""
    assert client.post("/api/maintenance/run", headers=actor_headers(employee)).status_code == 403
    response = client.post("/api/maintenance/run", headers=actor_headers(hr_admin), params={"today": "2024-01-10"})
    assert response.status_code == 200
    assert response.json()["failures"] == 0


def test_requester_cannot_decide_over_http(client, manager, actor_headers):
    """Test a manager's own completion request is refused with 403."""
    as_manager = actor_headers(manager)
    task_id = _create_task(client, as_manager, manager)
    _move(client, as_manager, task_id, "in_progress")
    _move(client, as_manager, task_id, "pending_review")
    request_id = _move(client, as_manager, task_id, "completed").json()["approval_request_id"]

    response = client.post(f"/api/approvals/{request_id}/decision", headers=as_manager, json={"decision": "approve"})
    assert response.status_code == 403
    assert response.json()["errors"][0]["code"] == "PERMISSION_DENIED"
    assert client.get(f"/api/approvals/{request_id}", headers=as_manager).json()["status"] == "pending"


def test_self_evaluation_flow_over_http(client, manager, employee, actor_headers):
    """Test self-evaluation submission, approval with an adjusted score, stats and leaderboard."""
    as_manager, as_employee = actor_headers(manager), actor_headers(employee)
    task_id = _create_task(client, as_manager, employee)
    _move(client, as_employee, task_id, "in_progress")
    _move(client, as_employee, task_id, "pending_review")

    created = client.post(
        "/api/self-evaluations/",
        headers=as_employee,
        json={"task_id": task_id, "self_score": 95, "achievements": "Done early"},
    )
    assert created.status_code == 201
    evaluation_id = created.json()["id"]
    assert created.json()["status"] == "draft"

    submitted = client.post(f"/api/self-evaluations/{evaluation_id}/submit", headers=as_employee)
    assert submitted.json()["status"] == "pending"

    assert client.get("/api/approvals/stats", headers=as_employee).status_code == 403
    stats = client.get("/api/approvals/stats", headers=as_manager).json()
    assert stats["pending"] == 1

    queue = client.get("/api/approvals/", headers=as_manager, params={"subject_type": "self_evaluation"}).json()
    assert len(queue) == 1
    decided = client.post(
        f"/api/approvals/{queue[0]['id']}/decision",
        headers=as_manager,
        json={"decision": "approve", "score": 88},
    )
    assert decided.status_code == 200

    evaluation = client.get(f"/api/self-evaluations/{evaluation_id}", headers=as_employee).json()
    assert evaluation["status"] == "approved"
    assert evaluation["approved_score"] == 88.0
    assert evaluation["rating"] == "good"

    stats = client.get("/api/approvals/stats", headers=as_manager).json()
    assert stats["pending"] == 0
    assert stats["approved_this_week"] == 1

    board = client.get("/api/self-evaluations/leaderboard", headers=as_manager).json()
    assert [row["employee_id"] for row in board] == [employee.id]
    departments = client.get("/api/self-evaluations/departments", headers=as_manager).json()
    assert departments[0]["rating_distribution"]["good"] == 1
