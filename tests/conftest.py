import pytest

from report_card.schemas import CompetencyDefinition


@pytest.fixture
def three_competences():
    return [
        CompetencyDefinition(id="C1", name="Number operations", max_score=10),
        CompetencyDefinition(id="C2", name="Geometry", max_score=10),
        CompetencyDefinition(id="C3", name="Data handling", max_score=10),
    ]
