import pytest


def submit(client, headers, user_id, **body):
    payload = {"amount": "120.50", "category": "Travel", "description": "Train ticket"}
    payload.update(body)
    return client.post("/api/v1/expenses/", json=payload, headers=headers(user_id))


class TestIdentity:
    def test_missing_headers_are_rejected(self, client):
        response = client.get("/api/v1/expenses/")
        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_ERROR"

    def test_non_integer_user_id_is_rejected(self, client, tenant):
        response = client.get("/api/v1/expenses/", headers={
            "X-User-Id": "abc", "X-User-Role": "employee", "X-Company-Id": str(tenant.company_id),
        })
        assert response.status_code == 401


class TestCompanies:
    def test_signup_creates_company_and_admin(self, client):
        response = client.post("/api/v1/companies/", json={
            "name": "Initech",
            "country": "US",
            "currency_code": "usd",
            "admin_name": "Bill",
            "admin_email": "bill@initech.example.com",
            "admin_password": "supersecret",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["currency_code"] == "USD"
        assert body["user_count"] == 1
        assert body["settings"]["approval_required"] is True
        assert body["admin_user_id"] > 0

    def test_duplicate_company_name_is_a_validation_error(self, client, tenant):
        response = client.post("/api/v1/companies/", json={
            "name": "Acme",
            "country": "US",
            "admin_name": "Wile",
            "admin_email": "wile@acme.example.com",
            "admin_password": "supersecret",
        })
        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_settings_update_is_admin_only(self, client, tenant, headers):
        url = f"/api/v1/companies/{tenant.company_id}/settings"
        denied = client.put(url, json={"max_expense_amount": "500"}, headers=headers(tenant.employee))
        assert denied.status_code == 403

        allowed = client.put(url, json={"default_approver_id": tenant.finance}, headers=headers(tenant.admin))
        assert allowed.status_code == 200
        assert allowed.json()["settings"]["default_approver_id"] == tenant.finance

    def test_default_approver_must_belong_to_tenant(self, client, tenant, headers, other_tenant):
        response = client.put(
            f"/api/v1/companies/{tenant.company_id}/settings",
            json={"default_approver_id": other_tenant.admin},
            headers=headers(tenant.admin),
        )
        assert response.status_code == 422

    def test_required_settings_cannot_be_nulled(self, client, tenant, headers):
        response = client.put(
            f"/api/v1/companies/{tenant.company_id}/settings",
            json={"approval_required": None},
            headers=headers(tenant.admin),
        )
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"] == {"approval_required": "must not be null"}

    def test_limit_and_default_approver_can_be_cleared(self, client, tenant, headers):
        response = client.put(
            f"/api/v1/companies/{tenant.company_id}/settings",
            json={"max_expense_amount": None, "default_approver_id": None},
            headers=headers(tenant.admin),
        )
        assert response.status_code == 200
        assert response.json()["settings"]["max_expense_amount"] is None

    def test_other_company_is_not_found(self, client, tenant, headers, other_tenant):
        response = client.get(f"/api/v1/companies/{other_tenant.company_id}", headers=headers(tenant.admin))
        assert response.status_code == 404
        assert response.json()["error"] == "NOT_FOUND"


class TestUsers:
    def test_admin_creates_user_and_role_change_is_audited(self, client, tenant, headers):
        created = client.post("/api/v1/users/", json={
            "name": "Newbie",
            "email": "newbie@example.com",
            "password": "password123",
            "role": "employee",
            "manager_id": tenant.manager,
        }, headers=headers(tenant.admin))
        assert created.status_code == 201
        user_id = created.json()["id"]

        promoted = client.put(f"/api/v1/users/{user_id}", json={"role": "manager"}, headers=headers(tenant.admin))
        assert promoted.json()["role"] == "manager"

        logs = client.get("/api/v1/audit-logs/", params={"action": "role_changed"}, headers=headers(tenant.admin))
        assert logs.json()["total"] == 1

    def test_employee_cannot_create_users(self, client, tenant, headers):
        response = client.post("/api/v1/users/", json={
            "name": "X", "email": "x@example.com", "password": "password123",
        }, headers=headers(tenant.employee))
        assert response.status_code == 403

    def test_user_cannot_manage_themselves(self, client, tenant, headers):
        response = client.put(
            f"/api/v1/users/{tenant.manager}",
            json={"manager_id": tenant.manager},
            headers=headers(tenant.admin),
        )
        assert response.status_code == 422

    def test_list_is_tenant_scoped(self, client, tenant, headers, other_tenant):
        response = client.get("/api/v1/users/", params={"limit": 100}, headers=headers(tenant.employee))
        ids = {user["id"] for user in response.json()["users"]}
        assert other_tenant.admin not in ids
        assert tenant.employee in ids


class TestApprovalRules:
    def test_create_list_and_deactivate(self, client, tenant, headers):
        created = client.post("/api/v1/approval-rules/", json={
            "name": "Large travel",
            "type": "amount-based",
            "conditions": {"categories": ["Travel"]},
            "amount_thresholds": [
                {"min_amount": "1000", "max_amount": "5000", "approvers": [tenant.manager, tenant.director]},
            ],
            "priority": 3,
        }, headers=headers(tenant.admin))
        assert created.status_code == 201
        rule_id = created.json()["id"]
        assert created.json()["rule_type"] == "amount-based"

        listed = client.get("/api/v1/approval-rules/", params={"is_active": True}, headers=headers(tenant.admin))
        assert [rule["id"] for rule in listed.json()["rules"]] == [rule_id]

        removed = client.delete(f"/api/v1/approval-rules/{rule_id}", headers=headers(tenant.admin))
        assert removed.json()["is_active"] is False

    def test_missing_payload_is_a_configuration_error(self, client, tenant, headers):
        response = client.post("/api/v1/approval-rules/", json={
            "name": "Broken", "type": "percentage",
            "approver_sequence": [{"user_id": tenant.manager, "level": 1}],
        }, headers=headers(tenant.admin))
        assert response.status_code == 422
        assert response.json()["error"] == "CONFIGURATION_ERROR"

    def test_approvers_must_belong_to_tenant(self, client, tenant, headers, other_tenant):
        response = client.post("/api/v1/approval-rules/", json={
            "name": "Foreign", "type": "specific", "specific_approver_id": other_tenant.admin,
        }, headers=headers(tenant.admin))
        assert response.status_code == 422
        assert response.json()["details"]["unknown_user_ids"] == [other_tenant.admin]

    def test_rule_name_cannot_be_nulled(self, client, tenant, headers):
        created = client.post("/api/v1/approval-rules/", json={
            "name": "Director", "type": "specific", "specific_approver_id": tenant.director,
        }, headers=headers(tenant.admin))
        response = client.put(
            f"/api/v1/approval-rules/{created.json()['id']}",
            json={"name": None},
            headers=headers(tenant.admin),
        )
        assert response.status_code == 422
        assert response.json()["details"] == {"name": "must not be null"}

    def test_deactivated_approvers_are_rejected(self, client, tenant, headers):
        client.put(f"/api/v1/users/{tenant.director}", json={"is_active": False}, headers=headers(tenant.admin))
        response = client.post("/api/v1/approval-rules/", json={
            "name": "Director", "type": "specific", "specific_approver_id": tenant.director,
        }, headers=headers(tenant.admin))
        assert response.status_code == 422
        assert response.json()["details"]["inactive_user_ids"] == [tenant.director]

    def test_rules_are_admin_only(self, client, tenant, headers):
        response = client.get("/api/v1/approval-rules/", headers=headers(tenant.manager))
        assert response.status_code == 403


class TestExpenseFlow:
    @pytest.fixture
    def sequence_rule(self, client, tenant, headers):
        response = client.post("/api/v1/approval-rules/", json={
            "name": "Two step",
            "type": "sequence",
            "approver_sequence": [
                {"role": "manager", "level": 1},
                {"user_id": tenant.director, "level": 2},
            ],
        }, headers=headers(tenant.admin))
        assert response.status_code == 201
        return response.json()["id"]

    def test_full_sequence_over_http(self, client, tenant, headers, sequence_rule):
        created = submit(client, headers, tenant.employee)
        assert created.status_code == 201
        expense_id = created.json()["id"]
        assert created.json()["approvers"] == [tenant.manager, tenant.director]

        early = client.post(f"/api/v1/expense-approval/{expense_id}/approve", headers=headers(tenant.director))
        assert early.status_code == 403
        assert early.json()["error"] == "AUTHORIZATION_ERROR"

        first = client.post(
            f"/api/v1/expense-approval/{expense_id}/approve",
            json={"comment": "looks fine"},
            headers=headers(tenant.manager),
        )
        assert first.status_code == 200
        assert first.json()["approval_history"][0]["comment"] == "looks fine"

        final = client.post(f"/api/v1/expense-approval/{expense_id}/approve", headers=headers(tenant.director))
        assert final.json()["status"] == "approved"

        again = client.post(f"/api/v1/expense-approval/{expense_id}/reject", headers=headers(tenant.director))
        assert again.status_code == 409
        assert again.json()["error"] == "STATE_ERROR"

        status = client.get(f"/api/v1/expense-approval/status/{expense_id}", headers=headers(tenant.employee))
        assert status.json()["is_final"] is True

    def test_admin_approval_advances_one_step(self, client, tenant, headers, sequence_rule):
        expense_id = submit(client, headers, tenant.employee).json()["id"]

        step = client.post(f"/api/v1/expense-approval/{expense_id}/approve", headers=headers(tenant.admin))
        assert step.status_code == 200
        assert step.json()["status"] == "pending"
        assert step.json()["approval_history"][0]["on_behalf_of"] == tenant.manager

        status = client.get(f"/api/v1/expense-approval/status/{expense_id}", headers=headers(tenant.employee))
        assert status.json()["awaiting_approvers"] == [tenant.director]

    def test_deactivated_manager_is_not_routed_and_cannot_decide(self, client, tenant, headers):
        expense_id = submit(client, headers, tenant.employee).json()["id"]
        client.put(f"/api/v1/users/{tenant.manager}", json={"is_active": False}, headers=headers(tenant.admin))

        blocked = submit(client, headers, tenant.employee)
        assert blocked.status_code == 422
        assert blocked.json()["error"] == "CONFIGURATION_ERROR"

        denied = client.post(f"/api/v1/expense-approval/{expense_id}/approve", headers=headers(tenant.manager))
        assert denied.status_code == 403

    def test_pending_queue_follows_the_sequence(self, client, tenant, headers, sequence_rule):
        expense_id = submit(client, headers, tenant.employee).json()["id"]

        queue = client.get("/api/v1/expense-approval/pending", headers=headers(tenant.manager)).json()
        assert [item["expense_id"] for item in queue["pending_reviews"]] == [expense_id]

        client.post(f"/api/v1/expense-approval/{expense_id}/approve", headers=headers(tenant.manager))
        assert client.get("/api/v1/expense-approval/pending", headers=headers(tenant.manager)).json()["total_count"] == 0
        assert client.get("/api/v1/expense-approval/pending", headers=headers(tenant.director)).json()["total_count"] == 1

    def test_policy_violation_maps_to_400(self, client, tenant, headers):
        response = submit(client, headers, tenant.employee, amount="25000")
        assert response.status_code == 400
        assert response.json()["error"] == "POLICY_VIOLATION"

    def test_missing_fields_map_to_validation_error(self, client, tenant, headers):
        response = client.post("/api/v1/expenses/", json={"category": "Travel"}, headers=headers(tenant.employee))
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert "amount" in body["details"]

    def test_malformed_body_uses_the_same_error_shape(self, client, tenant, headers):
        response = client.post("/api/v1/expenses/", json={"amount": "lots"}, headers=headers(tenant.employee))
        assert response.status_code == 422
        assert set(response.json()) == {"error", "message", "details"}

    def test_visibility_rules(self, client, tenant, headers):
        expense_id = submit(client, headers, tenant.employee).json()["id"]

        assert client.get(f"/api/v1/expenses/{expense_id}", headers=headers(tenant.manager)).status_code == 200
        assert client.get(f"/api/v1/expenses/{expense_id}", headers=headers(tenant.loner)).status_code == 403
        assert client.get(f"/api/v1/expenses/{expense_id}", headers=headers(tenant.admin)).status_code == 200

        assert client.get("/api/v1/expenses/", headers=headers(tenant.loner)).json()["total_count"] == 0
        assert client.get("/api/v1/expenses/", headers=headers(tenant.finance)).json()["total_count"] == 0

    def test_update_and_delete(self, client, tenant, headers):
        expense_id = submit(client, headers, tenant.employee).json()["id"]

        updated = client.put(
            f"/api/v1/expenses/{expense_id}",
            json={"description": "Train ticket, return"},
            headers=headers(tenant.employee),
        )
        assert updated.status_code == 200
        assert updated.json()["description"] == "Train ticket, return"

        deleted = client.delete(f"/api/v1/expenses/{expense_id}", headers=headers(tenant.employee))
        assert deleted.status_code == 204
        assert client.get(f"/api/v1/expenses/{expense_id}", headers=headers(tenant.employee)).status_code == 404

    def test_stats_summary(self, client, tenant, headers):
        submit(client, headers, tenant.employee, amount="100")
        approved_id = submit(client, headers, tenant.employee, amount="50").json()["id"]
        client.post(f"/api/v1/expense-approval/{approved_id}/approve", headers=headers(tenant.manager))

        stats = client.get("/api/v1/expenses/stats/summary", headers=headers(tenant.employee)).json()
        assert stats["total_expenses"] == 2
        assert stats["pending_expenses"] == 1
        assert stats["approved_expenses"] == 1
        assert float(stats["approved_amount"]) == 50.0


def test_audit_trail_is_admin_only(client, tenant, headers):
    response = client.get("/api/v1/audit-logs/", headers=headers(tenant.manager))
    assert response.status_code == 403


def test_root_reports_version(client):
    assert client.get("/").json()["version"] == "1.0.0"
