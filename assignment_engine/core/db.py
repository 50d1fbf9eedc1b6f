from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.POSTGRES_DSN, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def _import_models():
    # registers every table on Base.metadata
    from assignment_engine.modules.attorneys import models as _attorneys  # noqa: F401
    from assignment_engine.modules.rules import models as _rules  # noqa: F401
    from assignment_engine.modules.assignments import models as _assignments  # noqa: F401
    from assignment_engine.modules.transfers import models as _transfers  # noqa: F401
    from assignment_engine.modules.workload import models as _workload  # noqa: F401
    from assignment_engine.modules.events import outbox as _outbox  # noqa: F401

async def init_models(bind=None):
    ## In dev-only "create_all" mode create tables directly; otherwise, migrations own the schema.
    if settings.DB_MANAGE.lower() != "create_all":
        return
    _import_models()
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
