import os
from pathlib import Path

import pytest
from httpx import AsyncClient, ASGITransport

os.environ.setdefault("PLAN_VERIFIER_STORAGE__DATABASE_URL", "sqlite+aiosqlite:///./test_plan_verifier.db")
os.environ.setdefault("PLAN_VERIFIER_STORAGE__ARTIFACT_DIR", "./.test_artifacts")

from services.plan_verifier.app.main import app  # noqa: E402
from services.plan_verifier.app.persistence.db import init_db  # noqa: E402


@pytest.fixture(autouse=True)
async def setup_db():
    if os.path.exists("test_plan_verifier.db"):
        os.remove("test_plan_verifier.db")
    await init_db()
    yield
    if os.path.exists("test_plan_verifier.db"):
        os.remove("test_plan_verifier.db")


@pytest.mark.asyncio
async def test_create_review_and_apply_changes(python_codebase, write_plan, variant_plan):
    plan_path = write_plan(variant_plan)
    payload = {"planPath": str(plan_path), "codebaseRoot": str(python_codebase)}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/reviews", json=payload, headers={"X-Correlation-ID": "corr-1"})
        assert response.status_code == 201, response.text
        data = response.json()
        review_id = data["id"]
        assert data["verdict"] == "APPROVED_WITH_CHANGES"
        assert data["planDigest"]
        assert [item["rating"] for item in data["dimensions"]] == ["PASS", "PASS", "PASS", "PASS", "WARN", "PASS"]

        response = await client.get(f"/reviews/{review_id}")
        assert response.status_code == 200
        assert response.json()["reportRef"].startswith("file://")

        response = await client.get(f"/reviews/{review_id}/findings")
        assert response.status_code == 200
        findings = response.json()
        assert [item["code"] for item in findings] == ["reference-variant"]
        assert findings[0]["edit"] == {"span": "getUser", "replacement": "get_user"}

        response = await client.get(f"/reviews/{review_id}/report")
        assert response.status_code == 200
        assert response.json()["surgicalChanges"] == 1

        response = await client.get(f"/reviews/{review_id}/report.md")
        assert response.status_code == 200
        assert "**Verdict: APPROVED_WITH_CHANGES**" in response.text

        response = await client.post(f"/reviews/{review_id}/apply", json={})
        assert response.status_code == 200, response.text
        revised = Path(response.json()["revisedPlanPath"])
        assert revised.read_text(encoding="utf-8") == variant_plan.replace("`getUser`", "`get_user`")
        assert plan_path.read_text(encoding="utf-8") == variant_plan

        response = await client.get(f"/reviews/{review_id}")
        assert response.json()["revisedPlanPath"] == str(revised)


@pytest.mark.asyncio
async def test_rerun_links_to_previous_review(python_codebase, write_plan, approved_plan):
    payload = {
        "planPath": str(write_plan(approved_plan)),
        "codebaseRoot": str(python_codebase),
        "options": {"maxFilesPerTask": 2},
    }

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/reviews", json=payload)
        assert response.status_code == 201, response.text
        first = response.json()
        assert first["verdict"] == "APPROVED"

        response = await client.post(f"/reviews/{first['id']}/rerun")
        assert response.status_code == 201, response.text
        second = response.json()
        assert second["previousRunId"] == first["id"]
        assert second["planDigest"] == first["planDigest"]

        response = await client.post(f"/reviews/{first['id']}/apply", json={})
        assert response.status_code == 422
        assert response.json()["error"] == "ApplyChangesError"


@pytest.mark.asyncio
async def test_invalid_inputs_are_reported(tmp_path, write_plan, approved_plan):
    payload = {"planPath": str(write_plan(approved_plan)), "codebaseRoot": str(tmp_path / "missing")}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/reviews", json=payload)
        assert response.status_code == 422
        body = response.json()
        assert body["error"] == "CodebaseIndexError"
        assert body["remediation"]

        response = await client.get("/reviews/does-not-exist")
        assert response.status_code == 404

        response = await client.get("/reviews/does-not-exist/report")
        assert response.status_code == 404


@pytest.mark.asyncio
async def test_exclude_dirs_option_extends_the_defaults(python_codebase, write_plan, approved_plan):
    (python_codebase / "node_modules" / "left-pad").mkdir(parents=True)
    (python_codebase / "node_modules" / "left-pad" / "index.js").write_text("module.exports = {};\n", encoding="utf-8")
    (python_codebase / "vendor").mkdir()
    (python_codebase / "vendor" / "legacy.py").write_text("def old():\n    pass\n", encoding="utf-8")
    payload = {
        "planPath": str(write_plan(approved_plan)),
        "codebaseRoot": str(python_codebase),
        "options": {"excludeDirs": ["vendor"]},
    }

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/reviews", json=payload)
        assert response.status_code == 201, response.text
        assert response.json()["indexedFiles"] == 3


@pytest.mark.asyncio
async def test_apply_output_path_stays_beside_the_plan(python_codebase, write_plan, variant_plan, tmp_path):
    plan_path = write_plan(variant_plan)
    payload = {"planPath": str(plan_path), "codebaseRoot": str(python_codebase)}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/reviews", json=payload)
        assert response.status_code == 201, response.text
        review_id = response.json()["id"]

        response = await client.post(f"/reviews/{review_id}/apply", json={"outputPath": str(tmp_path / "escaped.md")})
        assert response.status_code == 422
        assert response.json()["error"] == "ApplyChangesError"
        assert not (tmp_path / "escaped.md").exists()

        response = await client.post(f"/reviews/{review_id}/apply", json={"outputPath": "revisions/plan.md"})
        assert response.status_code == 200, response.text
        assert response.json()["revisedPlanPath"] == str((plan_path.parent / "revisions" / "plan.md").resolve())

        response = await client.post(f"/reviews/{review_id}/apply", json={"outputPath": "revisions/plan.md"})
        assert response.status_code == 422
