from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from chatstream.core.config import settings

engine = create_engine(
    f"sqlite:///{settings.db_path}",
    echo=settings.debug,
    connect_args={"check_same_thread": False},
)


def init_db(bind: Engine | None = None) -> None:
    import chatstream.models  # noqa: F401 - ensure models are registered
    SQLModel.metadata.create_all(bind or engine)
