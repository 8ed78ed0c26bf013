from .database import Base, engine
from .routes import router


def init_attendance_module() -> None:
    Base.metadata.create_all(bind=engine)


__all__ = ["router", "init_attendance_module"]
