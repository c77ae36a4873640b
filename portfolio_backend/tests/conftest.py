"""
Fixtures comuns para todos os testes do backend.
"""
import pytest
from fastapi.testclient import TestClient

from portfolio_backend.api import app
from portfolio_backend.feature_flags import FeatureFlags
from portfolio_backend.project_planning.api import reset_schedule_state


@pytest.fixture(autouse=True)
def clean_state():
    """Store, undo slot e flags limpos em cada teste."""
    reset_schedule_state()
    FeatureFlags.reset()
    yield
    reset_schedule_state()
    FeatureFlags.reset()


@pytest.fixture(scope="function")
def test_client():
    """Cliente de teste FastAPI."""
    return TestClient(app)


@pytest.fixture
def sample_snapshot():
    """Dois projetos com uma dependência FS (lag 2) e um milestone."""
    return {
        "projects": [
            {"id": 1, "name": "A", "startDate": "2025-01-01", "endDate": "2025-01-10"},
            {"id": 2, "name": "B", "startDate": "2025-01-05", "endDate": "2025-01-15"},
            {"id": 3, "name": "C", "desiredStartDate": "2025-01-01", "desiredCompletionDate": "2025-01-05"},
        ],
        "milestones": [
            {"id": 10, "projectId": 1, "name": "Design review", "plannedEndDate": "2025-01-05"},
        ],
        "dependencies": [
            {
                "id": 1,
                "predecessorType": "project", "predecessorId": 1, "predecessorPoint": "end",
                "successorType": "project", "successorId": 2, "successorPoint": "start",
                "dependencyType": "FS", "lagDays": 2, "isActive": True,
            },
        ],
    }


@pytest.fixture
def loaded_client(test_client, sample_snapshot):
    """Cliente com o snapshot de exemplo já carregado no store."""
    response = test_client.put("/schedule/snapshot", json=sample_snapshot)
    assert response.status_code == 200
    return test_client
