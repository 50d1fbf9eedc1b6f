import asyncio
import logging
import sys
from datetime import date

from assignment_engine.core.db import SessionLocal, init_models
from assignment_engine.core.logging import setup_logging
from assignment_engine.modules.workload.jobs import WorkloadRecalculationJob

async def main():
    """
    Run one workload recalculation pass for every organization (optionally for a given date: YYYY-MM-DD).
    """
    setup_logging()
    as_of = date.fromisoformat(sys.argv[1]) if len(sys.argv) > 1 else None
    await init_models()
    report = await WorkloadRecalculationJob(SessionLocal).run_once(as_of=as_of)
    logging.getLogger("workload.job").info(f"Report: {report.model_dump()}")
    return 1 if report.failed else 0

if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
