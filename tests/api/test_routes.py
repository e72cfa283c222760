import asyncio
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from app.config import settings
from app.database import Base, get_session
from app import main as api_main
from app.browser import BrowserUnavailableError
from app.main import (
    app,
    get_job_store,
    get_repository,
    get_run_client,
    get_crawl_runner_factory,
    get_runner_factory,
    require_browser_engine,
)
from app.models import scheduled_job  # noqa: F401
from app.models.job import JobStatus
from app.workflow.crawl_runner import CrawlRunner
from app.workflow.runner import AgentRunner
from tests.fakes import LANDING_URL, FakePage, FakeSite, FakeVision, done, scroll

class IdleRunner:
    """Runner that leaves the job pending."""

    def __init__(self, job_id, params, store=None):
        self.job_id = job_id

    async def run(self):
        return None

class FakeRepository:
    def __init__(self, due=None, error=None):
        self.due = due or []
        self.error = error

    async def fetch_due(self, now=None):
        if self.error:
            raise self.error
        return self.due

@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.mark.api
class TestJobRoutes:
    @pytest.fixture(autouse=True)
    def wire(self, store, browser, run_settings):
        def runner_factory(job_id, params, store=None):
            return AgentRunner(
                job_id,
                params,
                store=store,
                vision=FakeVision(scroll(), done("Reached checkout")),
                session_factory=browser.session,
                settings=run_settings,
            )

        app.dependency_overrides[get_job_store] = lambda: store
        app.dependency_overrides[get_runner_factory] = lambda: runner_factory
        app.dependency_overrides[require_browser_engine] = lambda: None

    def test_health_check(self, client):
        """Test the health check endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_start_and_poll(self, client, browser):
        """Test job start and status endpoints."""
        response = client.post("/jobs", json={"entryUrl": LANDING_URL, "maxSteps": 5})
        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "pending"
        job_id = data["job_id"]

        # The background task has finished by the time the test client returns
        response = client.get(f"/jobs/{job_id}")
        assert response.status_code == 200
        status_data = response.json()
        assert status_data["status"] == "completed"
        assert status_data["current_step"] == 1
        assert status_data["total_steps"] == 5
        assert status_data["error"] is None
        assert status_data["result"]["summary"] == "Reached checkout"
        assert len(status_data["result"]["steps"]) == 1
        assert browser.closed == 1

    def test_pending_job_is_visible(self, client, store):
        app.dependency_overrides[get_runner_factory] = lambda: IdleRunner
        job_id = client.post("/jobs", json={"entry_url": LANDING_URL}).json()["job_id"]

        data = client.get(f"/jobs/{job_id}").json()
        assert data["status"] == "pending"
        assert data["current_step"] == 0
        assert data["total_steps"] == 100
        assert data["result"] is None
        assert store.get_job(job_id).status == JobStatus.PENDING

    def test_max_steps_is_clamped(self, client):
        app.dependency_overrides[get_runner_factory] = lambda: IdleRunner
        job_id = client.post("/jobs", json={"entryUrl": LANDING_URL, "maxSteps": 1}).json()["job_id"]
        assert client.get(f"/jobs/{job_id}").json()["total_steps"] == 3

    def test_list_jobs(self, client):
        app.dependency_overrides[get_runner_factory] = lambda: IdleRunner
        job_id = client.post("/jobs", json={"entryUrl": LANDING_URL}).json()["job_id"]
        jobs = client.get("/jobs").json()["jobs"]
        assert [job["job_id"] for job in jobs] == [job_id]
        assert "result" not in jobs[0]

    def test_missing_browser_engine(self, client, store, monkeypatch):
        async def unavailable():
            raise BrowserUnavailableError("Chromium is not installed")

        app.dependency_overrides.pop(require_browser_engine)
        monkeypatch.setattr(api_main, "ensure_browser_engine", unavailable)
        response = client.post("/jobs", json={"entryUrl": LANDING_URL})
        assert response.status_code == 503
        assert "Chromium" in response.json()["detail"]
        assert len(store) == 0

    def test_error_handling(self, client):
        """Test API error handling."""
        assert client.get("/jobs/invalid-id").status_code == 404
        assert client.post("/jobs", json={}).status_code == 422
        assert client.post("/jobs", json={"entryUrl": "ftp://shop.example.com"}).status_code == 422

@pytest.mark.api
class TestCrawlRoutes:
    @pytest.fixture(autouse=True)
    def wire(self, store, browser, run_settings):
        site = FakeSite({
            LANDING_URL: FakePage("Example Shop", links=[("/offer", "Get the offer")]),
            LANDING_URL + "offer": FakePage("Limited offer"),
        })

        def runner_factory(job_id, params, store=None):
            return CrawlRunner(
                job_id,
                params,
                store=store,
                session_factory=browser.session,
                inspector_factory=lambda page: site,
                settings=run_settings,
            )

        app.dependency_overrides[get_job_store] = lambda: store
        app.dependency_overrides[get_crawl_runner_factory] = lambda: runner_factory
        app.dependency_overrides[require_browser_engine] = lambda: None

    def test_start_and_poll(self, client):
        response = client.post("/crawl-jobs", json={"entryUrl": LANDING_URL, "maxDepth": 1})
        assert response.status_code == 202
        job_id = response.json()["job_id"]

        data = client.get(f"/jobs/{job_id}").json()
        assert data["kind"] == "crawl"
        assert data["status"] == "completed"
        assert [s["url"] for s in data["result"]["steps"]] == [LANDING_URL, LANDING_URL + "offer"]
        assert data["result"]["steps"][0]["cta_buttons"][0]["text"] == "Get the offer"
        assert data["result"]["visited_urls"] == [LANDING_URL, LANDING_URL + "offer"]

    def test_quiz_params_are_clamped(self, client, store):
        app.dependency_overrides[get_crawl_runner_factory] = lambda: IdleRunner
        response = client.post("/crawl-jobs", json={"entryUrl": LANDING_URL, "quizMode": True, "quizMaxSteps": 80})
        job = store.get_job(response.json()["job_id"])
        assert job.params.quiz_mode is True
        assert job.params.quiz_max_steps == 35
        assert job.total_steps == 35

    def test_invalid_entry_url(self, client):
        assert client.post("/crawl-jobs", json={"entryUrl": "file:///etc/passwd"}).status_code == 422

@pytest.mark.api
class TestCronRoute:
    @pytest.fixture(autouse=True)
    def wire(self):
        app.dependency_overrides[get_run_client] = lambda: None
        app.dependency_overrides[get_repository] = lambda: FakeRepository()

    def test_secret_not_configured(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "")
        assert client.get("/scheduled-jobs/run").status_code == 503

    def test_wrong_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
        assert client.get("/scheduled-jobs/run").status_code == 401
        response = client.get("/scheduled-jobs/run", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_bearer_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
        response = client.get("/scheduled-jobs/run", headers={"Authorization": "Bearer s3cret"})
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["jobs_checked"] == 0

    def test_query_secret(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
        assert client.get("/scheduled-jobs/run", params={"secret": "s3cret"}).status_code == 200

    def test_query_secret_with_other_auth_scheme(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
        response = client.get(
            "/scheduled-jobs/run", params={"secret": "s3cret"}, headers={"Authorization": "Basic dXNlcjpwYXNz"}
        )
        assert response.status_code == 200
        response = client.get("/scheduled-jobs/run", headers={"Authorization": "Basic s3cret"})
        assert response.status_code == 401

    def test_store_failure_is_reported(self, client, monkeypatch):
        monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")
        app.dependency_overrides[get_repository] = lambda: FakeRepository(error=RuntimeError("db locked"))
        response = client.get("/scheduled-jobs/run", params={"secret": "s3cret"})
        assert response.status_code == 500
        assert "db locked" in response.json()["detail"]

@pytest.mark.api
class TestScheduledJobRoutes:
    @pytest.fixture(autouse=True)
    def database(self, tmp_path):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)

        async def create_tables():
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

        asyncio.run(create_tables())
        maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        async def override_session():
            async with maker() as db:
                yield db

        app.dependency_overrides[get_session] = override_session

    def create(self, client, **overrides):
        body = {"title": "Quiz funnel", "prompt": "Walk the quiz to checkout", "maxTurns": 2, "frequency": "weekly"}
        body.update(overrides)
        response = client.post("/scheduled-jobs", json=body)
        assert response.status_code == 201
        return response.json()["job"]

    def test_create_and_list(self, client):
        job = self.create(client, startUrl="https://shop.example.com")
        assert job["max_turns"] == 5
        assert job["frequency"] == "weekly"
        assert job["is_active"] is True
        assert job["start_url"] == "https://shop.example.com"

        jobs = client.get("/scheduled-jobs").json()["jobs"]
        assert [j["id"] for j in jobs] == [job["id"]]

    def test_blank_title_rejected(self, client):
        response = client.post("/scheduled-jobs", json={"title": "  ", "prompt": "p"})
        assert response.status_code == 422

    def test_toggle(self, client):
        job = self.create(client)
        response = client.patch(f"/scheduled-jobs/{job['id']}", json={"action": "toggle", "isActive": False})
        assert response.status_code == 200
        assert response.json()["job"]["is_active"] is False

        response = client.patch(f"/scheduled-jobs/{job['id']}", json={"action": "toggle"})
        assert response.status_code == 400

    def test_update_fields(self, client):
        job = self.create(client)
        response = client.patch(
            f"/scheduled-jobs/{job['id']}", json={"title": "Renamed", "maxTurns": 9999, "frequency": "monthly"}
        )
        updated = response.json()["job"]
        assert updated["title"] == "Renamed"
        assert updated["max_turns"] == 500
        assert updated["frequency"] == "monthly"

    def test_unknown_job(self, client):
        assert client.patch("/scheduled-jobs/missing", json={"title": "x"}).status_code == 404
        assert client.delete("/scheduled-jobs/missing").status_code == 404

    def test_delete(self, client):
        job = self.create(client)
        assert client.delete(f"/scheduled-jobs/{job['id']}").json() == {"success": True}
        assert client.get("/scheduled-jobs").json()["jobs"] == []
