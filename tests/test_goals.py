"""Tests de la cascada de objetivos: enganches, jerarquía y mapa mental."""

import pytest
from freezegun import freeze_time

from goals import build_mind_map, initial_collapsed
from tests.helpers import create_goal, create_task

CHAIN = [
    {"level": "vision", "title": "Vivir del campo"},
    {"level": "three_year", "title": "Finca propia"},
    {"level": "one_year", "title": "Ahorrar la entrada"},
    {"level": "monthly", "title": "Ahorrar 800 €", "target_month": "2024-01-20"},
    {"level": "weekly", "title": "Revisar gastos", "week_start": "2024-01-17"},
]


def full_cascade(client, headers):
    response = client.post("/goals/cascade", json={"category": "WEALTH", "steps": CHAIN}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]["goals"]


class TestGoalParents:
    def test_vision_without_parent(self, client, auth_headers):
        vision = create_goal(client, auth_headers, level="vision", title="Mi visión")
        assert vision["parent_id"] is None
        assert vision["status"] == "ACTIVE"
        assert vision["category"] == "OTHER"

    def test_vision_cannot_have_parent(self, client, auth_headers):
        vision = create_goal(client, auth_headers, level="vision", title="A")
        response = client.post("/goals", json={
            "level": "vision", "title": "B", "parent_id": vision["id"],
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_three_year_needs_parent(self, client, auth_headers):
        response = client.post("/goals", json={"level": "three_year", "title": "Huérfano"}, headers=auth_headers)
        assert response.status_code == 400

    def test_parent_must_be_previous_level(self, client, auth_headers):
        vision = create_goal(client, auth_headers, level="vision", title="Visión")
        response = client.post("/goals", json={
            "level": "one_year", "title": "Salto", "parent_id": vision["id"],
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_missing_parent_is_404(self, client, auth_headers):
        response = client.post("/goals", json={
            "level": "three_year", "title": "X", "parent_id": 999,
        }, headers=auth_headers)
        assert response.status_code == 404

    def test_weekly_may_be_unlinked(self, client, auth_headers):
        weekly = create_goal(client, auth_headers, level="weekly", title="Suelta", week_start="2024-01-17")
        assert weekly["week_start"] == "2024-01-15"

        unlinked = client.get("/goals/unlinked", headers=auth_headers).json()
        assert [g["id"] for g in unlinked] == [weekly["id"]]

    def test_archived_weekly_is_not_unlinked(self, client, auth_headers):
        weekly = create_goal(client, auth_headers, level="weekly", title="Vieja", week_start="2024-01-01")
        client.patch(f"/goals/{weekly['id']}", json={"status": "ARCHIVED"}, headers=auth_headers)
        assert client.get("/goals/unlinked", headers=auth_headers).json() == []

    def test_monthly_needs_target_month(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)
        one_year = goals[2]
        response = client.post("/goals", json={
            "level": "monthly", "title": "Sin mes", "parent_id": one_year["id"],
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_other_users_parent_is_404(self, client, auth_headers):
        from tests.helpers import register
        vision = create_goal(client, auth_headers, level="vision", title="Ajena")
        intruder = register(client, email="otro@example.com")
        response = client.post("/goals", json={
            "level": "three_year", "title": "X", "parent_id": vision["id"],
        }, headers=intruder)
        assert response.status_code == 404


class TestCascade:
    def test_creates_linked_chain(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)

        assert [g["level"] for g in goals] == [s["level"] for s in CHAIN]
        for parent, child in zip(goals, goals[1:]):
            assert child["parent_id"] == parent["id"]
        assert goals[3]["target_month"] == "2024-01-01"
        assert goals[4]["week_start"] == "2024-01-15"
        assert {g["category"] for g in goals} == {"WEALTH"}

    def test_cannot_start_in_the_middle(self, client, auth_headers):
        response = client.post("/goals/cascade", json={
            "steps": [{"level": "one_year", "title": "X"}],
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_skipping_a_level_creates_nothing(self, client, auth_headers):
        response = client.post("/goals/cascade", json={"steps": [
            {"level": "vision", "title": "V"},
            {"level": "one_year", "title": "Salto"},
        ]}, headers=auth_headers)
        assert response.status_code == 400
        assert client.get("/goals", headers=auth_headers).json() == []

    def test_attaches_under_existing_parent(self, client, auth_headers):
        vision = create_goal(client, auth_headers, level="vision", title="V")
        response = client.post("/goals/cascade", json={
            "parent_id": vision["id"],
            "steps": [{"level": "three_year", "title": "T"}, {"level": "one_year", "title": "U"}],
        }, headers=auth_headers)
        created = response.json()["data"]["goals"]
        assert created[0]["parent_id"] == vision["id"]


class TestGoalCompletion:
    @freeze_time("2024-01-15 12:00:00")
    def test_points_only_once(self, client, auth_headers):
        weekly = create_goal(client, auth_headers, level="weekly", title="Semana", week_start="2024-01-15")
        url = f"/goals/{weekly['id']}"

        first = client.patch(url, json={"status": "COMPLETED"}, headers=auth_headers).json()["data"]
        assert first["points_earned"] == 200
        assert first["new_total"] == 200
        assert first["goal"]["progress"] == 100
        assert first["goal"]["completed_at"] is not None

        reopened = client.patch(url, json={"status": "ACTIVE"}, headers=auth_headers).json()["data"]
        assert reopened["goal"]["completed_at"] is None

        again = client.patch(url, json={"status": "COMPLETED"}, headers=auth_headers).json()["data"]
        assert again["points_earned"] == 0
        assert again["new_total"] == 200

    def test_cannot_be_own_parent(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)
        weekly = goals[4]
        response = client.patch(f"/goals/{weekly['id']}", json={"parent_id": weekly["id"]}, headers=auth_headers)
        assert response.status_code == 400


class TestHierarchy:
    @freeze_time("2024-01-15 12:00:00")
    def test_counts_and_tasks(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)
        weekly = goals[4]
        done = create_task(client, auth_headers, title="Apuntar gastos", weekly_goal_id=weekly["id"])
        create_task(client, auth_headers, title="Cancelar suscripción", weekly_goal_id=weekly["id"])
        client.post(f"/tasks/{done['id']}/complete", headers=auth_headers)

        body = client.get("/goals/hierarchy", params={"include_tasks": True}, headers=auth_headers).json()

        assert body["stats"] == {"total_visions": 1, "total_goals": 5, "total_tasks": 2}
        node = body["visions"][0]
        assert node["id"] == f"goal-{goals[0]['id']}"
        for _ in range(4):
            assert node["children_count"] == 1
            node = node["children"][0]
        assert node["level"] == "weekly"
        assert (node["children_count"], node["completed_count"]) == (2, 1)
        assert {c["level"] for c in node["children"]} == {"task"}

    def test_tasks_hidden_by_default(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)
        create_task(client, auth_headers, weekly_goal_id=goals[4]["id"])

        body = client.get("/goals/hierarchy", headers=auth_headers).json()
        weekly = body["visions"][0]["children"][0]["children"][0]["children"][0]["children"][0]
        assert weekly["children"] == []
        assert weekly["children_count"] == 1
        assert body["stats"]["total_tasks"] == 0

    def test_task_must_link_to_weekly_goal(self, client, auth_headers):
        vision = create_goal(client, auth_headers, level="vision", title="V")
        response = client.post("/tasks", json={"title": "X", "weekly_goal_id": vision["id"]}, headers=auth_headers)
        assert response.status_code == 400


class TestDeleteGoal:
    def test_deletes_subtree_and_unlinks_tasks(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)
        task = create_task(client, auth_headers, weekly_goal_id=goals[4]["id"])

        response = client.delete(f"/goals/{goals[0]['id']}", headers=auth_headers)

        assert response.json()["data"]["deleted_count"] == 5
        assert client.get("/goals", headers=auth_headers).json() == []
        tasks = client.get("/tasks", params={"date": task["scheduled_date"]}, headers=auth_headers).json()["tasks"]
        assert tasks[0]["weekly_goal_id"] is None

    def test_deleting_middle_keeps_ancestors(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)
        client.delete(f"/goals/{goals[2]['id']}", headers=auth_headers)
        remaining = client.get("/goals", headers=auth_headers).json()
        assert sorted(g["level"] for g in remaining) == ["three_year", "vision"]


# =============================================================================
# MAPA MENTAL
# =============================================================================


def node(node_id, level, children=(), status="ACTIVE"):
    return {"id": node_id, "level": level, "title": node_id, "category": "OTHER",
            "status": status, "progress": 0, "children": list(children)}


class TestMindMapLayout:
    def tree(self):
        return [node("goal-1", "vision", [node("goal-2", "three_year", status="COMPLETED")])]

    def test_horizontal_positions_are_top_left(self):
        result = build_mind_map(self.tree(), set(), "horizontal")
        by_id = {n["id"]: n for n in result["nodes"]}

        # capa 0 centrada en 110; capa 1 en 220 + 100 + 100 = 420; hueco = 100 + 40
        assert by_id["goal-1"]["position"] == {"x": 0, "y": 20}
        assert by_id["goal-2"]["position"] == {"x": 320, "y": 25}
        assert (by_id["goal-1"]["width"], by_id["goal-1"]["height"]) == (220, 100)

    def test_vertical_swaps_axes(self):
        result = build_mind_map(self.tree(), set(), "vertical")
        by_id = {n["id"]: n for n in result["nodes"]}

        assert by_id["goal-1"]["position"] == {"x": 15, "y": 0}
        assert by_id["goal-2"]["position"] == {"x": 25, "y": 180}

    def test_edges_animated_only_for_active_children(self):
        tree = [node("goal-1", "vision", [
            node("goal-2", "three_year"),
            node("goal-3", "three_year", status="COMPLETED"),
        ])]
        edges = {e["id"]: e for e in build_mind_map(tree)["edges"]}

        assert edges["goal-1-goal-2"]["animated"] is True
        assert edges["goal-1-goal-3"]["animated"] is False
        assert edges["goal-1-goal-2"]["source"] == "goal-1"

    def test_collapsed_node_hides_children(self):
        tree = [node("goal-1", "vision", [node("goal-2", "three_year", [node("goal-3", "one_year")])])]
        result = build_mind_map(tree, {"goal-2"})

        assert [n["id"] for n in result["nodes"]] == ["goal-1", "goal-2"]
        assert result["nodes"][1]["is_collapsed"] is True
        assert len(result["edges"]) == 1

    def test_tasks_need_include_tasks(self):
        tree = [node("goal-1", "weekly", [node("task-9", "task")])]
        assert len(build_mind_map(tree)["nodes"]) == 1
        assert len(build_mind_map(tree, include_tasks=True)["nodes"]) == 2

    def test_siblings_do_not_overlap(self):
        tree = [node("goal-1", "vision", [
            node("goal-2", "three_year"),
            node("goal-3", "three_year", [node("goal-4", "one_year"), node("goal-5", "one_year")]),
        ])]
        nodes = {n["id"]: n for n in build_mind_map(tree)["nodes"]}

        # el hermano con más hojas va primero
        assert nodes["goal-3"]["position"]["y"] < nodes["goal-2"]["position"]["y"]
        assert nodes["goal-4"]["position"]["y"] + nodes["goal-4"]["height"] <= nodes["goal-5"]["position"]["y"]

    def test_invalid_direction(self):
        with pytest.raises(ValueError):
            build_mind_map(self.tree(), set(), "diagonal")

    def test_initial_collapsed_from_depth_two(self):
        tree = [node("goal-1", "vision", [
            node("goal-2", "three_year", [node("goal-3", "one_year", [node("goal-4", "monthly")])]),
        ])]
        assert initial_collapsed(tree) == {"goal-3"}


class TestMindMapEndpoint:
    def test_default_collapses_deep_levels(self, client, auth_headers):
        goals = full_cascade(client, auth_headers)

        body = client.get("/goals/mindmap", headers=auth_headers).json()

        assert body["direction"] == "horizontal"
        assert [n["level"] for n in body["nodes"]] == ["vision", "three_year", "one_year"]
        assert f"goal-{goals[2]['id']}" in body["collapsed"]

    def test_explicit_empty_collapsed_shows_all(self, client, auth_headers):
        full_cascade(client, auth_headers)
        body = client.get("/goals/mindmap", params={"collapsed": "", "direction": "vertical"},
                          headers=auth_headers).json()
        assert len(body["nodes"]) == 5
        assert len(body["edges"]) == 4

    def test_invalid_direction_is_400(self, client, auth_headers):
        response = client.get("/goals/mindmap", params={"direction": "diagonal"}, headers=auth_headers)
        assert response.status_code == 400
