"""Tests de los endpoints de tareas diarias y tareas recurrentes."""

from freezegun import freeze_time

from tests.helpers import create_task

TODAY = "2024-01-15"


@freeze_time("2024-01-15 12:00:00")
class TestDailyTasks:
    def test_defaults_to_today(self, client, auth_headers):
        task = create_task(client, auth_headers, title="Escribir informe")
        assert task["scheduled_date"] == TODAY
        assert task["priority"] == "SECONDARY"
        assert task["status"] == "PENDING"

    def test_second_mit_same_day_rejected(self, client, auth_headers):
        create_task(client, auth_headers, title="MIT 1", priority="MIT")
        response = client.post("/tasks", json={"title": "MIT 2", "priority": "MIT"}, headers=auth_headers)
        assert response.status_code == 400
        assert "MIT" in response.json()["error"]

        other_day = client.post("/tasks", json={
            "title": "MIT mañana", "priority": "MIT", "scheduled_date": "2024-01-16",
        }, headers=auth_headers)
        assert other_day.status_code == 200

    def test_primary_limit_follows_user_setting(self, client, auth_headers):
        client.patch("/auth/me", json={"primary_task_limit": 1}, headers=auth_headers)
        create_task(client, auth_headers, priority="PRIMARY")
        response = client.post("/tasks", json={"title": "Otra", "priority": "PRIMARY"}, headers=auth_headers)
        assert response.status_code == 400

    def test_list_is_ordered_by_priority(self, client, auth_headers):
        create_task(client, auth_headers, title="c", priority="SECONDARY")
        create_task(client, auth_headers, title="b", priority="PRIMARY")
        create_task(client, auth_headers, title="a", priority="MIT")

        body = client.get("/tasks", params={"date": TODAY}, headers=auth_headers).json()

        assert [t["priority"] for t in body["tasks"]] == ["MIT", "PRIMARY", "SECONDARY"]
        assert body["stats"]["total"] == 3
        assert body["limits"]["MIT"] == 1

    def test_complete_then_uncomplete(self, client, auth_headers):
        task = create_task(client, auth_headers, priority="MIT")

        done = client.post(f"/tasks/{task['id']}/complete", headers=auth_headers)
        assert done.status_code == 200
        data = done.json()["data"]
        assert data["points"]["earned"] == 100
        assert data["task"]["status"] == "COMPLETED"
        assert data["streak"]["current"] == 1

        again = client.post(f"/tasks/{task['id']}/complete", headers=auth_headers)
        assert again.status_code == 400

        undone = client.post(f"/tasks/{task['id']}/uncomplete", headers=auth_headers).json()["data"]
        assert undone["points_removed"] == 100
        assert undone["new_total"] == 0

    def test_patch_cannot_complete(self, client, auth_headers):
        task = create_task(client, auth_headers)
        response = client.patch(f"/tasks/{task['id']}", json={"status": "COMPLETED"}, headers=auth_headers)
        assert response.status_code == 400

    def test_patch_priority_respects_limit(self, client, auth_headers):
        create_task(client, auth_headers, priority="MIT")
        task = create_task(client, auth_headers)
        response = client.patch(f"/tasks/{task['id']}", json={"priority": "MIT"}, headers=auth_headers)
        assert response.status_code == 400

    def test_carry_over(self, client, auth_headers):
        task = create_task(client, auth_headers, priority="MIT")
        response = client.post("/tasks/carry-over", json={"task_ids": [task["id"]]}, headers=auth_headers)
        moved = response.json()["data"]["tasks"][0]
        assert moved["scheduled_date"] == "2024-01-16"
        assert moved["priority"] == "PRIMARY"

    def test_other_users_task_is_404(self, client, auth_headers):
        from tests.helpers import register
        task = create_task(client, auth_headers)
        intruder = register(client, email="otro@example.com")
        assert client.post(f"/tasks/{task['id']}/complete", headers=intruder).status_code == 404

    def test_subtasks(self, client, auth_headers):
        task = create_task(client, auth_headers)
        first = client.post(f"/tasks/{task['id']}/subtasks", json={"title": "Intro"}, headers=auth_headers).json()["data"]
        second = client.post(f"/tasks/{task['id']}/subtasks", json={"title": "Datos"}, headers=auth_headers).json()["data"]
        assert (first["order"], second["order"]) == (0, 1)

        updated = client.patch(
            f"/tasks/{task['id']}/subtasks/{first['id']}", json={"completed": True}, headers=auth_headers
        ).json()["data"]
        assert updated["completed"] is True

        assert client.delete(f"/tasks/{task['id']}/subtasks/{second['id']}", headers=auth_headers).status_code == 200
        listed = client.get("/tasks", headers=auth_headers).json()["tasks"][0]
        assert [s["title"] for s in listed["subtasks"]] == ["Intro"]

    def test_daily_planning(self, client, auth_headers):
        first = client.post("/tasks/plan", headers=auth_headers).json()["data"]
        second = client.post("/tasks/plan", headers=auth_headers).json()["data"]
        assert first["points_earned"] == 50
        assert second["already_planned"] is True


@freeze_time("2024-01-15 12:00:00")
class TestRecurringTasks:
    def weekly_template(self, client, headers):
        response = client.post("/recurring-tasks", json={
            "title": "Gimnasio",
            "priority": "PRIMARY",
            "pattern": "WEEKLY",
            "days_of_week": ["MON", "WED"],
            "start_date": "2024-01-01",
        }, headers=headers)
        assert response.status_code == 200, response.text
        return response.json()["data"]

    def test_weekly_requires_days(self, client, auth_headers):
        response = client.post("/recurring-tasks", json={
            "title": "Gimnasio", "priority": "PRIMARY", "pattern": "WEEKLY",
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_custom_requires_interval(self, client, auth_headers):
        response = client.post("/recurring-tasks", json={
            "title": "Regar", "priority": "SECONDARY", "pattern": "CUSTOM",
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_generate_range_is_idempotent(self, client, auth_headers):
        self.weekly_template(client, auth_headers)
        payload = {"start_date": "2024-01-01", "end_date": "2024-01-14"}

        first = client.post("/recurring-tasks/generate", json=payload, headers=auth_headers).json()["data"]
        second = client.post("/recurring-tasks/generate", json=payload, headers=auth_headers).json()["data"]

        assert first["created_count"] == 4
        assert len(first["task_ids"]) == 4
        assert second["created_count"] == 0
        assert {s["reason"] for s in second["skipped"]} == {"Already exists"}

    def test_generate_defaults_to_today(self, client, auth_headers):
        self.weekly_template(client, auth_headers)
        data = client.post("/recurring-tasks/generate", headers=auth_headers).json()["data"]
        assert data["created_count"] == 1
        tasks = client.get("/tasks", headers=auth_headers).json()["tasks"]
        assert tasks[0]["title"] == "Gimnasio"

    def test_range_over_ninety_days_rejected(self, client, auth_headers):
        response = client.post("/recurring-tasks/generate", json={
            "start_date": "2024-01-01", "end_date": "2024-06-01",
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_paused_template_generates_nothing(self, client, auth_headers):
        template = self.weekly_template(client, auth_headers)
        client.patch(f"/recurring-tasks/{template['id']}", json={"is_active": False}, headers=auth_headers)
        data = client.post("/recurring-tasks/generate", json={"date": TODAY}, headers=auth_headers).json()["data"]
        assert data["created_count"] == 0

    def test_patch_validates_merged_pattern(self, client, auth_headers):
        template = self.weekly_template(client, auth_headers)
        response = client.patch(f"/recurring-tasks/{template['id']}", json={"pattern": "CUSTOM"}, headers=auth_headers)
        assert response.status_code == 400

    def test_delete_keeps_generated_tasks(self, client, auth_headers):
        template = self.weekly_template(client, auth_headers)
        client.post("/recurring-tasks/generate", headers=auth_headers)

        assert client.delete(f"/recurring-tasks/{template['id']}", headers=auth_headers).status_code == 200
        tasks = client.get("/tasks", headers=auth_headers).json()["tasks"]
        assert len(tasks) == 1
        assert tasks[0]["recurring_template_id"] is None
