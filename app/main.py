import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from app.config import settings
from app.routers import inventory, orders

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Back Office Orders')

app.include_router(orders.router)
app.include_router(inventory.router)


@app.get('/healthz', response_class=PlainTextResponse)
def healthz() -> str:
    return 'ok'


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
