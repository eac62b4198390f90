from prometheus_fastapi_instrumentator import Instrumentator

from epp_ledger import create_app
from epp_ledger.core.config import settings
from epp_ledger.core.logging import configure_logging

configure_logging()
app = create_app()
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app)


@app.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


def run() -> None:
    import uvicorn

    uvicorn.run("epp_ledger.main:app", host=settings.HOST, port=settings.PORT)
