"""Tests de auth, health y el formato de errores."""

from fastapi.testclient import TestClient

from tests.helpers import register


class TestHealth:
    def test_health_checks_database(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["app"] == "Cascada API"
        assert "timestamp" in body


class TestAuth:
    def test_register_and_me(self, client):
        headers = register(client, timezone="Europe/Madrid")
        me = client.get("/auth/me", headers=headers).json()
        assert me["timezone"] == "Europe/Madrid"
        assert me["primary_task_limit"] == 3
        assert me["level"] == 1

    def test_duplicate_email_conflicts(self, client):
        register(client)
        response = client.post("/auth/register", json={
            "email": "ana@example.com", "password": "otra-contraseña", "name": "Ana",
        })
        assert response.status_code == 409
        assert response.json() == {"error": "Ya existe una cuenta con este email"}

    def test_invalid_timezone_rejected(self, client):
        response = client.post("/auth/register", json={
            "email": "x@example.com", "password": "contraseña-segura", "name": "X",
            "timezone": "Marte/Olympus",
        })
        assert response.status_code == 400

    def test_login(self, client):
        register(client)
        ok = client.post("/auth/login", json={"email": "ana@example.com", "password": "contraseña-segura"})
        bad = client.post("/auth/login", json={"email": "ana@example.com", "password": "no-es-esta"})
        assert ok.status_code == 200
        assert bad.status_code == 401
        assert "error" in bad.json()

    def test_missing_token_is_401(self, client):
        response = client.get("/auth/me")
        assert response.status_code == 401
        assert response.json() == {"error": "No autenticado"}

    def test_update_me(self, client, auth_headers):
        response = client.patch("/auth/me", json={"primary_task_limit": 5, "name": "Ana B."}, headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["data"]["primary_task_limit"] == 5

    def test_update_me_validates_limit(self, client, auth_headers):
        response = client.patch("/auth/me", json={"primary_task_limit": 11}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "Datos no válidos"
        assert response.json()["details"]

    def test_delete_account(self, client, auth_headers):
        client.post("/tasks", json={"title": "Algo"}, headers=auth_headers)
        assert client.delete("/auth/me", headers=auth_headers).status_code == 200
        assert client.get("/auth/me", headers=auth_headers).status_code == 404


class TestErrorShape:
    def test_unknown_route_uses_error_shape(self, client):
        response = client.get("/no-existe")
        assert response.status_code == 404
        assert "error" in response.json()

    def test_unhandled_exception_is_500_json(self, app):
        @app.get("/boom")
        def boom():
            raise RuntimeError("kaboom")

        with TestClient(app, raise_server_exceptions=False) as c:
            response = c.get("/boom")
        assert response.status_code == 500
        assert response.json() == {"error": "Error interno del servidor", "type": "RuntimeError"}
