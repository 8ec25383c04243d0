import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

import database
from database import Base, session_scope
from models import Tag


@pytest.fixture
def scoped_engine(monkeypatch):
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    monkeypatch.setattr(
        database,
        "SessionLocal",
        sessionmaker(bind=engine, autoflush=False, expire_on_commit=False),
    )
    return engine


def _tag_names(engine) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(select(Tag.name)))


def test_session_scope_commits_on_success(scoped_engine) -> None:
    with session_scope() as session:
        session.add(Tag(name="Trip", color="#ABCDEF"))

    assert _tag_names(scoped_engine) == ["Trip"]


def test_session_scope_rolls_back_and_reraises(scoped_engine) -> None:
    with pytest.raises(RuntimeError, match="boom"):
        with session_scope() as session:
            session.add(Tag(name="Trip", color="#ABCDEF"))
            session.flush()
            raise RuntimeError("boom")

    assert _tag_names(scoped_engine) == []
