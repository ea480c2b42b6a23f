from locust import HttpUser, task, between

class TrainerUser(HttpUser):
    wait_time = between(1, 3)

    def on_start(self):
        payload = {"email": "load@formation.com", "password": "password"}
        r = self.client.post("/api/auth/register", json=payload)
        if r.status_code != 200:
            r = self.client.post("/api/auth/login", json=payload)
        token = r.json().get("access_token")
        self.headers = {"Authorization": f"Bearer {token}"}

    @task(3)
    def list_checkouts(self):
        self.client.get("/api/checkouts", headers=self.headers)

    @task(2)
    def dashboard_stats(self):
        self.client.get("/api/checkouts/stats", headers=self.headers)

    @task(1)
    def list_equipment(self):
        self.client.get("/api/equipment", params={"status": "Fonctionnel"}, headers=self.headers)
