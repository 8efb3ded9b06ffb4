from app_config import AppConfigurator
from constants import APP_NAME, APP_VERSION

app = AppConfigurator.create_app()


@app.get("/")
async def root():
    return {"name": APP_NAME, "version": APP_VERSION, "status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
